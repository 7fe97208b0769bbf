from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

from guestsync.domain.models import EntityKind
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor


class IdAliasStoreSQLite:
    """Temporary id → server id table filled as offline creates are confirmed."""

    def __init__(self, executor: SQLiteExecutor) -> None:
        self._executor = executor

    async def record(self, temp_id: str, server_id: str, kind: EntityKind) -> None:
        resolved_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        def _insert(connection: sqlite3.Connection) -> None:
            connection.execute(
                """
                INSERT INTO id_aliases (temp_id, server_id, entity_kind, resolved_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(temp_id) DO UPDATE SET server_id = excluded.server_id, resolved_at = excluded.resolved_at
                """,
                (temp_id, server_id, kind.value, resolved_at),
            )

        await self._executor.run(_insert, context="aliases.record")

    async def all_aliases(self) -> dict[str, str]:
        def _read(connection: sqlite3.Connection) -> list[sqlite3.Row]:
            return connection.execute("SELECT temp_id, server_id FROM id_aliases").fetchall()

        rows = await self._executor.run(_read, context="aliases.all")
        return {row["temp_id"]: row["server_id"] for row in rows}
