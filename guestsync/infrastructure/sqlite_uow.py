from __future__ import annotations

import contextlib
import logging
import re
import sqlite3
import uuid
from collections.abc import Iterator

logger = logging.getLogger(__name__)

_UNSAFE_LABEL_CHARS = re.compile(r"[^a-z0-9_]")


def _savepoint_name(label: str) -> str:
    safe_label = _UNSAFE_LABEL_CHARS.sub("_", label.lower()) or "unit"
    return f"sp_{safe_label}_{uuid.uuid4().hex[:8]}"


@contextlib.contextmanager
def transaction(connection: sqlite3.Connection, *, label: str = "unit") -> Iterator[None]:
    """Unit of work on an autocommit connection.

    The outermost block takes the write lock up front (`BEGIN IMMEDIATE`) so
    a cache refresh cannot interleave with a queue write from another
    connection. Inner blocks become savepoints that roll back on their own.
    """
    if connection.in_transaction:
        savepoint = _savepoint_name(label)
        connection.execute(f"SAVEPOINT {savepoint}")
        try:
            yield
        except Exception:
            connection.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
            connection.execute(f"RELEASE SAVEPOINT {savepoint}")
            logger.debug("sqlite_savepoint_rolled_back label=%s", label)
            raise
        connection.execute(f"RELEASE SAVEPOINT {savepoint}")
        return

    connection.execute("BEGIN IMMEDIATE")
    try:
        yield
    except Exception:
        connection.rollback()
        logger.debug("sqlite_transaction_rolled_back label=%s", label)
        raise
    connection.commit()
