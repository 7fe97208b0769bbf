from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Mapping

from guestsync.domain.actions import ActionKind, PendingAction
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PendingActionQueueSQLite:
    """Durable FIFO of mutations not yet confirmed by the server.

    Entries are never reordered or merged; `seq` comes from AUTOINCREMENT so a
    dequeued number is never reused.
    """

    def __init__(self, executor: SQLiteExecutor) -> None:
        self._executor = executor

    async def enqueue(self, kind: ActionKind, payload: Mapping[str, Any]) -> PendingAction:
        serialized = json.dumps(dict(payload), ensure_ascii=False)
        created_at = _now_iso()

        def _insert(connection: sqlite3.Connection) -> int:
            cursor = connection.execute(
                "INSERT INTO pending_actions (kind, payload, created_at) VALUES (?, ?, ?)",
                (kind.value, serialized, created_at),
            )
            return int(cursor.lastrowid)

        seq = await self._executor.run(_insert, context="queue.enqueue")
        logger.info("action_queued seq=%s kind=%s", seq, kind.value)
        return PendingAction(seq=seq, kind=kind, payload=json.loads(serialized), created_at=created_at)

    async def list_pending(self) -> list[PendingAction]:
        def _read(connection: sqlite3.Connection) -> list[sqlite3.Row]:
            return connection.execute(
                "SELECT seq, kind, payload, created_at FROM pending_actions ORDER BY seq ASC"
            ).fetchall()

        rows = await self._executor.run(_read, context="queue.list_pending")
        actions: list[PendingAction] = []
        for row in rows:
            try:
                actions.append(
                    PendingAction(
                        seq=int(row["seq"]),
                        kind=ActionKind.parse(row["kind"]),
                        payload=json.loads(row["payload"]),
                        created_at=row["created_at"],
                    )
                )
            except (ValueError, json.JSONDecodeError):
                logger.warning("pending_action_unreadable seq=%s kind=%s", row["seq"], row["kind"])
        return actions

    async def dequeue(self, seq: int) -> None:
        def _delete(connection: sqlite3.Connection) -> int:
            cursor = connection.execute("DELETE FROM pending_actions WHERE seq = ?", (seq,))
            return cursor.rowcount

        removed = await self._executor.run(_delete, context="queue.dequeue")
        if not removed:
            logger.debug("dequeue_noop seq=%s", seq)

    async def count(self) -> int:
        def _count(connection: sqlite3.Connection) -> int:
            return int(connection.execute("SELECT COUNT(*) FROM pending_actions").fetchone()[0])

        return await self._executor.run(_count, context="queue.count")

    async def rewrite_payload(self, seq: int, payload: Mapping[str, Any]) -> None:
        serialized = json.dumps(dict(payload), ensure_ascii=False)

        def _update(connection: sqlite3.Connection) -> None:
            connection.execute("UPDATE pending_actions SET payload = ? WHERE seq = ?", (serialized, seq))

        await self._executor.run(_update, context="queue.rewrite_payload")
