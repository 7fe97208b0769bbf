from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable

from guestsync.domain.models import CachedEntity, EntityKind, normalize_entity
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor
from guestsync.infrastructure.sqlite_uow import transaction

logger = logging.getLogger(__name__)

_TABLES = {
    EntityKind.GUESTS: "cached_guests",
    EntityKind.GROUPS: "cached_groups",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _row_params(entity: CachedEntity, cached_at: str) -> tuple[Any, ...]:
    record = entity.to_record()
    return (
        entity.id,
        json.dumps(record, ensure_ascii=False, sort_keys=True),
        1 if entity.pending_sync else 0,
        cached_at,
    )


class LocalCacheStoreSQLite:
    """Best-effort mirror of server entities, one table per entity kind.

    Rows keep the raw JSON record; it goes through `normalize_entity` on the
    way out so rows written by older builds are migrated when read.
    """

    def __init__(self, executor: SQLiteExecutor) -> None:
        self._executor = executor

    async def get_all(self, kind: EntityKind) -> list[CachedEntity]:
        table = _TABLES[kind]

        def _read(connection: sqlite3.Connection) -> list[sqlite3.Row]:
            return connection.execute(f"SELECT id, payload, pending_sync FROM {table} ORDER BY rowid").fetchall()

        rows = await self._executor.run(_read, context=f"cache.get_all({kind.value})")
        return [entity for entity in (self._to_entity(kind, row) for row in rows) if entity is not None]

    async def get(self, kind: EntityKind, entity_id: str) -> CachedEntity | None:
        table = _TABLES[kind]

        def _read(connection: sqlite3.Connection) -> sqlite3.Row | None:
            return connection.execute(
                f"SELECT id, payload, pending_sync FROM {table} WHERE id = ?",
                (entity_id,),
            ).fetchone()

        row = await self._executor.run(_read, context=f"cache.get({kind.value})")
        if row is None:
            return None
        return self._to_entity(kind, row)

    async def replace_all(self, kind: EntityKind, entities: Iterable[CachedEntity]) -> None:
        table = _TABLES[kind]
        cached_at = _now_iso()
        params = [_row_params(entity, cached_at) for entity in entities]

        def _replace(connection: sqlite3.Connection) -> None:
            with transaction(connection, label=f"cache_replace_{kind.value}"):
                connection.execute(f"DELETE FROM {table}")
                connection.executemany(
                    f"INSERT OR REPLACE INTO {table} (id, payload, pending_sync, cached_at) VALUES (?, ?, ?, ?)",
                    params,
                )

        await self._executor.run(_replace, context=f"cache.replace_all({kind.value})")
        logger.debug("cache_replaced kind=%s count=%s", kind.value, len(params))

    async def upsert(self, kind: EntityKind, entity: CachedEntity) -> None:
        table = _TABLES[kind]
        params = _row_params(entity, _now_iso())

        def _upsert(connection: sqlite3.Connection) -> None:
            connection.execute(
                f"""
                INSERT INTO {table} (id, payload, pending_sync, cached_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload = excluded.payload,
                    pending_sync = excluded.pending_sync,
                    cached_at = excluded.cached_at
                """,
                params,
            )

        await self._executor.run(_upsert, context=f"cache.upsert({kind.value})")

    async def remove(self, kind: EntityKind, entity_id: str) -> None:
        table = _TABLES[kind]

        def _delete(connection: sqlite3.Connection) -> None:
            connection.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))

        await self._executor.run(_delete, context=f"cache.remove({kind.value})")

    @staticmethod
    def _to_entity(kind: EntityKind, row: sqlite3.Row) -> CachedEntity | None:
        try:
            raw = json.loads(row["payload"])
        except json.JSONDecodeError:
            raw = None
        if not isinstance(raw, dict):
            logger.warning("cache_row_unreadable kind=%s id=%s", kind.value, row["id"])
            return None
        raw.setdefault("id", row["id"])
        raw.setdefault("pending_sync", bool(row["pending_sync"]))
        return normalize_entity(kind, raw)
