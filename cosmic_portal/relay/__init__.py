"""
Relay protocol client.

Components:
- codec: hex wire codec for file payloads
- session: SessionStore, the single owner of the session id
- router: MessageRouter, frame dispatch plus ack/heartbeat replies
- lifecycle: ConnectionManager, channel state machine with reconnects
- upload: UploadCoordinator, multipart uploads with a size guard
"""

from . import codec
from .backoff import ReconnectPolicy
from .models import (
    ConnectionState,
    Delivery,
    FrameType,
    Session,
    UploadResult,
)
from .session import SessionStore
from .router import DeliveryCallback, MessageRouter
from .lifecycle import ConnectionManager
from .upload import DEFAULT_MAX_UPLOAD_BYTES, UploadCoordinator

__all__ = [
    "codec",
    "ReconnectPolicy",
    "ConnectionState",
    "Delivery",
    "FrameType",
    "Session",
    "UploadResult",
    "SessionStore",
    "DeliveryCallback",
    "MessageRouter",
    "ConnectionManager",
    "DEFAULT_MAX_UPLOAD_BYTES",
    "UploadCoordinator",
]
