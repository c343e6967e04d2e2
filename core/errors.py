"""Exception hierarchy for the offline write queue and its collaborators."""
from __future__ import annotations

from typing import Any, Optional


class OfflineQueueError(Exception):
    """Base class for errors raised by the offline layer."""


class ValidationError(OfflineQueueError, ValueError):
    """Malformed input; nothing was enqueued or written."""


class PersistenceError(OfflineQueueError):
    """The local journal could not be read or written."""


class StoreError(OfflineQueueError):
    """A document store call failed.

    ``status`` carries the HTTP status when the backend reported one.
    """

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ReplayError(OfflineQueueError):
    def __init__(self, operation: Any, cause: BaseException):
        super().__init__(f"{getattr(operation, 'kind', '?')} {getattr(operation, 'path', '?')}: {cause}")
        self.operation = operation
        self.cause = cause


class TransientReplayError(ReplayError):
    """Replay failed but the operation stays queued for another pass."""


class PermanentReplayError(ReplayError):
    """Replay failed and the retry budget is spent; the operation was dropped."""


__all__ = [
    "OfflineQueueError",
    "PermanentReplayError",
    "PersistenceError",
    "ReplayError",
    "StoreError",
    "TransientReplayError",
    "ValidationError",
]
