"""
Cosmic Portal client.

An asyncio client for an anonymous file relay plus a read-only view of a
remote file inventory.

Usage:
    from cosmic_portal import PortalController

    async with PortalController() as portal:
        portal.on_delivery(lambda name, data: print(name, len(data)))
        await portal.upload(b"hello", "hello.txt")
"""

from .controller import PortalController
from .core.config import Settings
from .errors import (
    ChannelError,
    CodecError,
    InventoryError,
    NoSessionError,
    PayloadTooLargeError,
    PortalError,
    SessionError,
    StateTransitionError,
    UploadError,
)

__version__ = "0.1.0"

__all__ = [
    "PortalController",
    "Settings",
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
