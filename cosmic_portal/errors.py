"""
Error taxonomy for the portal client.

Every error carries the name of the operation that failed and, where a
backend answered, its HTTP status and body, so a caller can render one
human-readable line from ``str(err)``.
"""

from typing import Optional


class PortalError(Exception):
    """Base exception for all portal client failures."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status = status
        self.body = body

    def __str__(self) -> str:
        text = f"{self.operation}: {self.message}"
        if self.status is not None:
            text += f" (HTTP {self.status})"
        if self.body:
            text += f": {self.body[:200]}"
        return text


class SessionError(PortalError):
    """The relay backend refused or failed a connect request."""


class ChannelError(PortalError):
    """The persistent channel failed terminally."""

    def __init__(self, message: str, *, operation: str = "channel", attempts: int = 0):
        super().__init__(message, operation=operation)
        self.attempts = attempts


class CodecError(PortalError):
    """A wire payload could not be decoded."""

    def __init__(self, message: str, *, operation: str = "decode"):
        super().__init__(message, operation=operation)


class PayloadTooLargeError(PortalError):
    """An upload exceeded the client-side size limit."""

    def __init__(self, size: int, limit: int, *, operation: str = "upload"):
        super().__init__(
            f"payload of {size} bytes exceeds the {limit} byte limit",
            operation=operation,
        )
        self.size = size
        self.limit = limit


class NoSessionError(PortalError):
    """An operation needed a live relay session and there was none."""

    def __init__(self, *, operation: str):
        super().__init__("no active relay session", operation=operation)


class UploadError(PortalError):
    """The relay backend rejected an upload, or the transport failed."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, operation="upload", status=status, body=body)


class InventoryError(PortalError):
    """An inventory backend call failed."""


class StateTransitionError(RuntimeError):
    """An illegal connection state transition was attempted."""


__all__ = [
    "PortalError",
    "SessionError",
    "ChannelError",
    "CodecError",
    "PayloadTooLargeError",
    "NoSessionError",
    "UploadError",
    "InventoryError",
    "StateTransitionError",
]
