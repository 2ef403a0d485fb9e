"""
Image sync error classes.

Provides a clear taxonomy of errors that can occur while talking to registries
and copying images. HTTP status codes and SDK exceptions are mapped into this
hierarchy so the orchestrator and CLI never need provider-specific handling.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport


class SyncError(Exception):
    """Base class for all image sync errors."""
    pass


class AuthError(SyncError):
    """
    Credential invalid, expired or rejected.

    Raised when:
    - HTTP 401 Unauthorized / 403 Forbidden
    - Token exchange endpoint returns a non-success response
    - A required secret file is missing or empty
    """
    pass


class NotFoundError(SyncError):
    """
    Repository absent where the provider signals it via status.

    Raised when:
    - HTTP 404 on a tag listing
    """
    pass


class TransientError(SyncError):
    """
    Network failure, timeout, rate limiting or server-side error.

    Raised when:
    - httpx transport errors (connect/read timeouts, connection resets)
    - HTTP 429 Too Many Requests
    - HTTP 5xx
    """
    pass


class ProtocolError(SyncError):
    """
    Unparseable or unexpected-shape response.

    Raised when:
    - Response body is not valid JSON
    - Required fields are missing or have the wrong type
    - Unexpected HTTP status codes
    """
    pass


class TransferError(SyncError):
    """Image copy between registries failed."""

    def __init__(self, message: str, source: str | None = None, destination: str | None = None):
        super().__init__(message)
        self.source = source
        self.destination = destination


class SyncCancelled(SyncError):
    """The run was cancelled between steps."""
    pass


class SyncRunError(SyncError):
    """
    One or more images failed while failures were isolated per image.

    Carries the full report so callers can show partial results.
    """

    def __init__(self, report: "SyncReport"):
        failed = ", ".join(f.image for f in report.failures)
        super().__init__(f"{len(report.failures)} image(s) failed to sync: {failed}")
        self.report = report


__all__ = [
    "SyncError",
    "AuthError",
    "NotFoundError",
    "TransientError",
    "ProtocolError",
    "TransferError",
    "SyncCancelled",
    "SyncRunError",
]
