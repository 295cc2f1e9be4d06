"""Exceptions raised by the sync engine."""
from typing import Optional


class FlipSyncError(Exception):
    """Base exception for the sync engine."""


class RemoteError(FlipSyncError):
    """A remote call failed or timed out. Always treated as transient."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(FlipSyncError, ValueError):
    """An entity payload is malformed. Surfaced to the caller, never retried."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class IntegrityError(FlipSyncError):
    """A durable cache entry is corrupt or unreadable."""

    def __init__(self, storage_key: str, reason: str) -> None:
        super().__init__(f"Corrupt cache entry {storage_key}: {reason}")
        self.storage_key = storage_key
        self.reason = reason


class MigrationAbortedError(FlipSyncError):
    """Migration was cancelled through the abort flag."""
