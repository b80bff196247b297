"""
Relay protocol models.

Frames on the relay channel are JSON objects tagged with ``type``. Inbound
deliveries are validated with pydantic; sessions and connection states are
plain Python types owned by the session store and lifecycle manager.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class FrameType(str, Enum):
    """Frame types spoken on the relay channel."""
    FILE_DELIVERY = "file_delivery"
    FILE_RECEIVED_ACK = "file_received_ack"
    HEARTBEAT = "heartbeat"
    HEARTBEAT_ACK = "heartbeat_ack"


class ConnectionState(Enum):
    """Lifecycle of the relay channel."""
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Session:
    """An anonymous relay session handed out by ``POST /connect``."""
    session_id: str
    message: str = ""
    next_step: str = ""

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> 'Session':
        """Builds a Session from the connect response body."""
        if not isinstance(data, dict):
            raise ValueError("connect response is not a JSON object")
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("connect response has no session_id")
        return cls(
            session_id=session_id,
            message=str(data.get("message") or ""),
            next_step=str(data.get("next_step") or ""),
        )


class Delivery(BaseModel):
    """A file pushed to this client by the relay."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_id: str
    filename: str
    size_bytes: int = Field(default=0, alias="file_size")
    content_type: str = "application/octet-stream"
    uploaded_at: Optional[str] = None
    encoded_content: str = Field(alias="file_content")


class UploadResult(BaseModel):
    """The relay's answer to ``POST /upload``."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_id: str
    filename: str
    size_bytes: int = Field(default=0, alias="size")
    message: str = ""


def ack_frame(file_id: str) -> Dict[str, str]:
    """Acknowledgment for a delivered file."""
    return {"type": FrameType.FILE_RECEIVED_ACK.value, "file_id": file_id}


def heartbeat_ack_frame() -> Dict[str, str]:
    """Reply to a server heartbeat."""
    return {"type": FrameType.HEARTBEAT_ACK.value}


def dump_frame(frame: Dict[str, Any]) -> str:
    """Serializes an outbound frame to compact JSON."""
    return json.dumps(frame, separators=(",", ":"))


__all__ = [
    "FrameType",
    "ConnectionState",
    "Session",
    "Delivery",
    "UploadResult",
    "ack_frame",
    "heartbeat_ack_frame",
    "dump_frame",
]
