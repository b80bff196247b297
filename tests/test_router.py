"""Tests for the MessageRouter dispatch table."""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from cosmic_portal.relay.router import MessageRouter

ACK = "file_received_ack"


def make_router(session_id: str = "abc123"):
    """Router bound to a live session, plus its reply mock."""
    sessions = MagicMock()
    sessions.is_current.side_effect = lambda sid: sid == session_id
    router = MessageRouter(sessions)
    router.begin_incarnation(session_id)
    return router, AsyncMock()


def delivery(file_id: str, filename: str = "a.txt", content: str = "6869") -> str:
    return json.dumps({
        "type": "file_delivery",
        "file_id": file_id,
        "filename": filename,
        "file_size": len(content) // 2,
        "content_type": "text/plain",
        "uploaded_at": "2026-10-19T12:00:00Z",
        "file_content": content,
    })


def sent(reply: AsyncMock) -> list:
    return [c.args[0] for c in reply.await_args_list]


class TestDeliveryDispatch:
    """Tests for file_delivery handling."""

    @pytest.mark.asyncio
    async def test_hello_delivery_invokes_callback_and_acks(self, hello_delivery):
        """Decoded content reaches the callback, then the ack goes out."""
        router, reply = make_router()
        callback = MagicMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(json.dumps(hello_delivery), "abc123", reply)

        callback.assert_called_once_with("hello.txt", b"hello")
        assert sent(reply) == [{"type": ACK, "file_id": "f1"}]

    @pytest.mark.asyncio
    async def test_acks_follow_arrival_order(self):
        router, reply = make_router()
        router.set_delivery_callback(MagicMock())

        for file_id in ("f1", "f2", "f3"):
            await router.handle_raw(delivery(file_id), "abc123", reply)

        assert [f["file_id"] for f in sent(reply)] == ["f1", "f2", "f3"]
        assert router.acknowledged == ["f1", "f2", "f3"]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        router, reply = make_router()
        callback = AsyncMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(delivery("f1", "b.bin", "00ff"), "abc123", reply)

        callback.assert_awaited_once_with("b.bin", b"\x00\xff")

    @pytest.mark.asyncio
    async def test_duplicate_file_id_processed_once(self):
        """A repeated file_id gets neither a second callback nor a second ack."""
        router, reply = make_router()
        callback = MagicMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(delivery("f1"), "abc123", reply)
        await router.handle_raw(delivery("f1"), "abc123", reply)

        assert callback.call_count == 1
        assert sent(reply) == [{"type": ACK, "file_id": "f1"}]

    @pytest.mark.asyncio
    async def test_new_incarnation_accepts_file_id_again(self):
        router, reply = make_router()
        callback = MagicMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(delivery("f1"), "abc123", reply)
        router.begin_incarnation("abc123")
        await router.handle_raw(delivery("f1"), "abc123", reply)

        assert callback.call_count == 2
        assert len(sent(reply)) == 2

    @pytest.mark.asyncio
    async def test_codec_failure_discards_but_acks(self):
        """Undecodable content never reaches the callback; it is still acknowledged once."""
        router, reply = make_router()
        callback = MagicMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(delivery("bad", content="zz"), "abc123", reply)

        callback.assert_not_called()
        assert sent(reply) == [{"type": ACK, "file_id": "bad"}]

    @pytest.mark.asyncio
    async def test_failing_callback_still_acks(self):
        router, reply = make_router()
        router.set_delivery_callback(MagicMock(side_effect=OSError("disk full")))

        await router.handle_raw(delivery("f1"), "abc123", reply)

        assert sent(reply) == [{"type": ACK, "file_id": "f1"}]

    @pytest.mark.asyncio
    async def test_no_callback_still_acks(self):
        router, reply = make_router()

        await router.handle_raw(delivery("f1"), "abc123", reply)

        assert sent(reply) == [{"type": ACK, "file_id": "f1"}]


class TestCallbackRegistration:
    """Tests for the single-subscriber callback."""

    @pytest.mark.asyncio
    async def test_register_replaces_previous(self):
        router, reply = make_router()
        first, second = MagicMock(), MagicMock()
        router.set_delivery_callback(first)
        router.set_delivery_callback(second)

        await router.handle_raw(delivery("f1"), "abc123", reply)

        first.assert_not_called()
        second.assert_called_once()
        assert router.delivery_callback is second

    def test_unregister(self):
        router, _ = make_router()
        router.set_delivery_callback(MagicMock())
        router.set_delivery_callback(None)
        assert router.delivery_callback is None


class TestControlFrames:
    """Tests for heartbeat, unknown and malformed frames."""

    @pytest.mark.asyncio
    async def test_heartbeat_replies(self):
        router, reply = make_router()
        await router.handle_raw('{"type": "heartbeat"}', "abc123", reply)
        assert sent(reply) == [{"type": "heartbeat_ack"}]

    @pytest.mark.asyncio
    async def test_unrecognized_type_ignored(self):
        router, reply = make_router()
        await router.handle_raw('{"type": "solar_flare", "x": 1}', "abc123", reply)
        reply.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        '"heartbeat"',
        '{"kind": "heartbeat"}',
        '{"type": 7}',
        '{"type": "file_delivery", "filename": "x.txt"}',
        '{"type": "file_delivery", "file_id": 5, "filename": "x", "file_content": "00"}',
    ])
    async def test_malformed_frame_does_not_stop_router(self, raw):
        """A malformed frame is dropped and the next valid frame still works."""
        router, reply = make_router()
        router.set_delivery_callback(MagicMock())

        await router.handle_raw(raw, "abc123", reply)
        reply.assert_not_awaited()

        await router.handle_raw(delivery("f2"), "abc123", reply)
        assert sent(reply) == [{"type": ACK, "file_id": "f2"}]

    @pytest.mark.asyncio
    async def test_orphaned_session_frames_dropped(self):
        """Frames from a channel of a replaced session are ignored."""
        router, reply = make_router("new-session")
        callback = MagicMock()
        router.set_delivery_callback(callback)

        await router.handle_raw(delivery("f1"), "old-session", reply)
        await router.handle_raw('{"type": "heartbeat"}', "old-session", reply)

        callback.assert_not_called()
        reply.assert_not_awaited()
