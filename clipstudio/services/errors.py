"""Error taxonomy shared by the orchestration services.

Each error carries the HTTP status the web layer answers with, so routes
never need their own translation tables.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ClipStudioError(RuntimeError):
    """Base class for failures that abort a whole operation."""

    http_status = 500

    def __init__(self, message: str, *, diagnostic: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic


class NotFoundError(ClipStudioError):
    """The entity does not exist, or is not visible to the caller."""

    http_status = 404


class UnauthorizedError(ClipStudioError):
    """The request carries no caller identity."""

    http_status = 401


class InvalidStateError(ClipStudioError):
    """A state-machine guard rejected the requested transition."""

    http_status = 400


class ValidationError(ClipStudioError):
    """The request payload is malformed or incomplete."""

    http_status = 400


class StorageError(ClipStudioError):
    """The object store rejected an upload or delete."""

    http_status = 502


class EncodeErrorKind(str, Enum):
    TIMEOUT = "timeout"
    ENCODER_FAILED = "encoder_failed"


class EncodeError(ClipStudioError):
    """A single encode did not produce an artifact."""

    def __init__(
        self,
        kind: EncodeErrorKind,
        message: str,
        *,
        diagnostic: Optional[str] = None,
    ) -> None:
        super().__init__(message, diagnostic=diagnostic)
        self.kind = kind


class DispatchErrorKind(str, Enum):
    WORKER_UNAVAILABLE = "worker_unavailable"


class DispatchError(ClipStudioError):
    """The rendition worker could not accept the job."""

    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        kind: DispatchErrorKind = DispatchErrorKind.WORKER_UNAVAILABLE,
        diagnostic: Optional[str] = None,
    ) -> None:
        super().__init__(message, diagnostic=diagnostic)
        self.kind = kind


__all__ = [
    "ClipStudioError",
    "DispatchError",
    "DispatchErrorKind",
    "EncodeError",
    "EncodeErrorKind",
    "InvalidStateError",
    "NotFoundError",
    "StorageError",
    "UnauthorizedError",
    "ValidationError",
]
