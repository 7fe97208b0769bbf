from __future__ import annotations


class AppError(Exception):
    """Root of every error guestsync raises on purpose."""


class ValidationError(AppError):
    """A mutation was refused locally before reaching the API or the queue."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InfraError(AppError):
    pass


class PersistenceError(InfraError):
    """The local SQLite file could not be read or written."""


class ExternalServiceError(InfraError):
    """The guest API answered badly or not at all.

    `status_code` is the HTTP status when there was a response to read one
    from, otherwise None.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientExternalError(ExternalServiceError):
    """Worth retrying unchanged on a later sync pass."""
