from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LoggingSyncNotifier:
    """Default notifier when no UI toast is wired; keeps the last message for callers that poll."""

    def __init__(self) -> None:
        self.last_message: str | None = None

    def notify_sync_completed(self, changes: int) -> None:
        self.last_message = f"sync completed: {changes} changes"
        logger.info(self.last_message)


class NullHaptics:
    def success(self) -> None:
        return None

    def error(self) -> None:
        return None
