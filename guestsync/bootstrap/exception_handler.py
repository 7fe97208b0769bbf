from __future__ import annotations

import asyncio
import json
import logging
import traceback
import uuid
from pathlib import Path
from types import TracebackType
from typing import Any, Callable

from guestsync.bootstrap.logging import CRASH_LOG_NAME
from guestsync.bootstrap.settings import resolve_log_dir
from guestsync.core.observability import generate_correlation_id, get_correlation_id, set_correlation_id

LoopExceptionHandler = Callable[[asyncio.AbstractEventLoop, dict[str, Any]], object]


def generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def _ensure_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if correlation_id:
        return correlation_id
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


def _write_fallback_crash_log(
    *,
    incident_id: str,
    correlation_id: str,
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    log_dir: Path | None = None,
) -> None:
    target_dir = log_dir or resolve_log_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "incident_id": incident_id,
        "correlation_id": correlation_id,
        "error_type": exc_type.__name__,
        "error_message": str(exc_value),
        "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
    }
    with (target_dir / CRASH_LOG_NAME).open("a", encoding="utf-8") as handler:
        handler.write(json.dumps(payload, ensure_ascii=False) + "\n")


def handle_unexpected_exception(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
    *,
    log_dir: Path | None = None,
) -> str:
    incident_id = generate_incident_id()
    correlation_id = _ensure_correlation_id()
    logger = logging.getLogger("guestsync.global_exception")

    try:
        logger.error(
            "Unhandled exception. incident_id=%s",
            incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra={"incident_id": incident_id, "correlation_id": correlation_id},
        )
    except Exception:  # noqa: BLE001
        _write_fallback_crash_log(
            incident_id=incident_id,
            correlation_id=correlation_id,
            exc_type=exc_type,
            exc_value=exc_value,
            exc_traceback=exc_traceback,
            log_dir=log_dir,
        )

    return incident_id


def asyncio_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Loop handler for exceptions nobody awaited (e.g. a crashed background task)."""
    exception = context.get("exception")
    if exception is None:
        logging.getLogger("guestsync.global_exception").error(
            "Event loop error: %s", context.get("message", "unknown")
        )
        return
    handle_unexpected_exception(type(exception), exception, exception.__traceback__)


def install_asyncio_exception_handler(loop: asyncio.AbstractEventLoop | None = None) -> LoopExceptionHandler | None:
    """Installs the incident-logging handler and returns the one it replaced."""
    target = loop or asyncio.get_running_loop()
    previous = target.get_exception_handler()
    target.set_exception_handler(asyncio_exception_handler)
    return previous
