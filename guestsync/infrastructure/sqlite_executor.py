from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from typing import Callable, TypeVar

from guestsync.domain.sync_errors import StorageUnavailableError

logger = logging.getLogger(__name__)

_LOCKED_RETRY_BACKOFF_SECONDS = (0.05, 0.15, 0.3)
_T = TypeVar("_T")


def _is_locked_operational_error(error: sqlite3.OperationalError) -> bool:
    return "locked" in str(error).lower()


def _run_with_locked_retry(operation: Callable[[], _T], *, context: str) -> _T:
    for attempt, delay_seconds in enumerate(_LOCKED_RETRY_BACKOFF_SECONDS, start=1):
        try:
            return operation()
        except sqlite3.OperationalError as error:
            if not _is_locked_operational_error(error):
                raise
            logger.warning(
                "SQLite locked in %s (attempt=%s/%s); retrying in %.0fms",
                context,
                attempt,
                len(_LOCKED_RETRY_BACKOFF_SECONDS),
                delay_seconds * 1000,
            )
            time.sleep(delay_seconds)

    return operation()


class SQLiteExecutor:
    """Serializes every unit of work on one connection and runs it off the event loop.

    Callers await `run`; while one unit holds the lock no other read or write
    on the same connection can start, which keeps multi-statement writes
    (e.g. clear + repopulate) atomic from the point of view of other tasks.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    async def run(self, operation: Callable[[sqlite3.Connection], _T], *, context: str) -> _T:
        async with self._lock:
            if self._closed:
                raise StorageUnavailableError(f"Local storage is closed ({context}).")
            try:
                return await asyncio.to_thread(
                    _run_with_locked_retry,
                    lambda: operation(self._connection),
                    context=context,
                )
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Local storage unavailable during {context}: {exc}") from exc

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            await asyncio.to_thread(self._connection.close)
