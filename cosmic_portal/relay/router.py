"""
Message Router for the relay channel.

Classifies inbound frames by ``type`` and dispatches them:

- ``file_delivery``: decode, hand to the delivery callback, acknowledge.
- ``heartbeat``: reply with ``heartbeat_ack``.
- anything else: log and ignore.

Malformed frames are logged and dropped; nothing a peer sends can make the
router raise.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog
from pydantic import ValidationError

from ..errors import CodecError
from . import codec
from .models import Delivery, FrameType, ack_frame, heartbeat_ack_frame
from .session import SessionStore

logger = structlog.get_logger(__name__)

# (filename, content) -> None, sync or async
DeliveryCallback = Callable[[str, bytes], Any]
ReplyFn = Callable[[Dict[str, Any]], Awaitable[None]]


class MessageRouter:
    """
    Dispatches relay frames for one controller.

    Holds at most one delivery callback; registering another replaces it.
    Tracks which file ids were acknowledged on the current channel so an
    ack is sent at most once per file per connection incarnation.
    """

    def __init__(self, sessions: SessionStore):
        self._sessions = sessions
        self._callback: Optional[DeliveryCallback] = None
        self._incarnation: Optional[str] = None
        self._acked_ids: Set[str] = set()
        self._acked_order: List[str] = []

    def set_delivery_callback(self, callback: Optional[DeliveryCallback]) -> None:
        """Register the single delivery callback (None unregisters)."""
        if self._callback is not None and callback is not None:
            logger.debug("delivery_callback_replaced")
        self._callback = callback

    @property
    def delivery_callback(self) -> Optional[DeliveryCallback]:
        return self._callback

    @property
    def acknowledged(self) -> List[str]:
        """File ids acknowledged in the current incarnation, in send order."""
        return list(self._acked_order)

    def begin_incarnation(self, session_id: str) -> None:
        """Start tracking acks for a freshly opened channel."""
        self._incarnation = session_id
        self._acked_ids.clear()
        self._acked_order.clear()

    async def handle_raw(self, raw: Any, session_id: str, reply: ReplyFn) -> None:
        """
        Process one inbound frame.

        Args:
            raw: The frame text as read from the channel.
            session_id: Session the channel carrying this frame belongs to.
            reply: Coroutine that sends an outbound frame on that channel.
        """
        if not self._sessions.is_current(session_id) or session_id != self._incarnation:
            logger.warning("frame_dropped_orphaned_session", session_id=session_id)
            return

        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("malformed_frame", reason="invalid json", error=str(e))
            return

        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            logger.warning("malformed_frame", reason="not a tagged record")
            return

        frame_type = frame["type"]
        if frame_type == FrameType.FILE_DELIVERY.value:
            await self._handle_delivery(frame, reply)
        elif frame_type == FrameType.HEARTBEAT.value:
            await reply(heartbeat_ack_frame())
        else:
            logger.info("unrecognized_frame", frame_type=frame_type)

    async def _handle_delivery(self, frame: Dict[str, Any], reply: ReplyFn) -> None:
        try:
            delivery = Delivery.model_validate(frame)
        except ValidationError as e:
            logger.warning(
                "malformed_frame",
                reason="invalid file_delivery",
                errors=e.error_count(),
            )
            return

        if delivery.file_id in self._acked_ids:
            logger.warning("duplicate_delivery_ignored", file_id=delivery.file_id)
            return

        try:
            content = codec.decode(delivery.encoded_content)
        except CodecError as e:
            logger.error(
                "delivery_discarded",
                file_id=delivery.file_id,
                filename=delivery.filename,
                error=str(e),
            )
        else:
            await self._invoke_callback(delivery, content)

        self._acked_ids.add(delivery.file_id)
        self._acked_order.append(delivery.file_id)
        await reply(ack_frame(delivery.file_id))
        logger.debug("delivery_acknowledged", file_id=delivery.file_id)

    async def _invoke_callback(self, delivery: Delivery, content: bytes) -> None:
        callback = self._callback
        if callback is None:
            logger.warning(
                "delivery_dropped_no_callback",
                file_id=delivery.file_id,
                filename=delivery.filename,
            )
            return

        logger.info(
            "delivery_received",
            file_id=delivery.file_id,
            filename=delivery.filename,
            size=len(content),
        )
        try:
            result = callback(delivery.filename, content)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("delivery_callback_failed", file_id=delivery.file_id)


__all__ = ["MessageRouter", "DeliveryCallback"]
