from __future__ import annotations

from typing import Literal

from guestsync.core.errors import ExternalServiceError, PersistenceError, TransientExternalError

SyncErrorCategory = Literal["network", "rejected", "unknown"]


class StorageUnavailableError(PersistenceError):
    pass


class NetworkUnavailableError(TransientExternalError):
    pass


class ServerRejectedError(ExternalServiceError):
    """A 4xx answer. The entry stays queued and is retried as-is."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message, status_code=status_code)


class UnknownSyncError(ExternalServiceError):
    pass


def classify_sync_error(error: BaseException) -> SyncErrorCategory:
    if isinstance(error, NetworkUnavailableError):
        return "network"
    if isinstance(error, ServerRejectedError):
        return "rejected"
    return "unknown"
