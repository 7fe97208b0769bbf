from __future__ import annotations

import logging
from typing import Any

from guestsync.core.observability import get_correlation_id, get_operation_name

operational_logger = logging.getLogger("guestsync.operational_error")


def log_operational_error(
    message: str,
    *,
    exc: BaseException,
    extra: dict[str, Any] | None = None,
) -> None:
    """Writes an ERROR record for a failure the caller handled and kept going after.

    The record carries the active correlation id and operation, the error
    type and, for API errors, the HTTP status.
    """
    metadata = dict(extra or {})
    correlation_id = metadata.get("correlation_id") or get_correlation_id()
    if correlation_id:
        metadata["correlation_id"] = correlation_id
    metadata.setdefault("error_type", type(exc).__name__)
    operation = get_operation_name()
    if operation:
        metadata.setdefault("operation", operation)
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        metadata.setdefault("status_code", status_code)
    operational_logger.error(
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"correlation_id": correlation_id, "extra": metadata},
    )
