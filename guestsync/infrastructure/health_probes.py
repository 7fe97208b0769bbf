from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0
_DB_ACTION = "open_db_help"
_SYNC_ACTION = "open_sync_panel"


class HttpHealthProbe:
    """`HEAD <api>/health`; any 2xx means the server is reachable."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self.last_latency_ms: float | None = None

    async def check(self) -> bool:
        started = time.perf_counter()
        try:
            response = await self._client.head("/health")
        except httpx.HTTPError as exc:
            logger.debug("health_probe_failed error=%s", type(exc).__name__)
            self.last_latency_ms = None
            return False
        self.last_latency_ms = (time.perf_counter() - started) * 1000
        return response.is_success

    async def aclose(self) -> None:
        await self._client.aclose()


class SQLiteLocalDbProbe:
    def __init__(self, connection_factory: Callable[[], sqlite3.Connection], migrations_total: int) -> None:
        self._connection_factory = connection_factory
        self._migrations_total = migrations_total

    def check(self) -> dict[str, tuple[bool, str, str]]:
        try:
            connection = self._connection_factory()
        except sqlite3.Error as exc:
            return _unreachable_result(exc)
        try:
            cursor = connection.cursor()
            cursor.execute("SELECT 1")
            db_ok = cursor.fetchone() is not None

            cursor.execute("SELECT COUNT(*) FROM schema_migrations")
            migrations_applied = int(cursor.fetchone()[0])
            migrations_ok = migrations_applied >= self._migrations_total

            cursor.execute("SELECT COUNT(*) FROM pending_actions")
            pending = int(cursor.fetchone()[0])
        except sqlite3.Error as exc:
            return _unreachable_result(exc)
        finally:
            connection.close()

        return {
            "local_db": (db_ok, "Local database accessible.", _DB_ACTION),
            "migrations": (
                migrations_ok,
                "Migrations up to date." if migrations_ok else "There are pending migrations.",
                _DB_ACTION,
            ),
            "pending_actions": (
                True,
                "No pending changes." if pending == 0 else f"{pending} changes waiting to sync.",
                _SYNC_ACTION,
            ),
        }


def _unreachable_result(exc: Exception) -> dict[str, tuple[bool, str, str]]:
    return {
        "local_db": (False, f"Local database not accessible: {exc}", _DB_ACTION),
        "migrations": (False, "Could not verify migration state.", _DB_ACTION),
        "pending_actions": (False, "Could not count pending changes.", _SYNC_ACTION),
    }
