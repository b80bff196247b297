"""
Connection Lifecycle Manager for the relay channel.

Owns the ConnectionState machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTING ...
    any live state -> CLOSED (explicit close or retries exhausted)

Every (re)connect asks the session store for a brand new session; a
dropped session id is never resumed. Reconnects follow a bounded
ReconnectPolicy and a single terminal ChannelError is surfaced when the
attempts run out.
"""

import asyncio
import inspect
from contextlib import suppress
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import structlog

from ..errors import ChannelError, PortalError, StateTransitionError
from .backoff import ReconnectPolicy
from .models import ConnectionState, Session, dump_frame
from .router import MessageRouter
from .session import SessionStore

logger = structlog.get_logger(__name__)

StateListener = Callable[[ConnectionState, ConnectionState], None]
ErrorHandler = Callable[[ChannelError], Any]

_S = ConnectionState
_ALLOWED = {
    _S.DISCONNECTED: {_S.CONNECTING, _S.CLOSED},
    _S.CONNECTING: {_S.CONNECTED, _S.DISCONNECTED, _S.RECONNECTING, _S.CLOSED},
    _S.CONNECTED: {_S.RECONNECTING, _S.CLOSED},
    _S.RECONNECTING: {_S.CONNECTING, _S.CLOSED},
    _S.CLOSED: set(),
}


class ConnectionManager:
    """
    Manages the lifecycle of the persistent relay channel.

    Features:
    - Session-scoped channel (``{ws_base}/ws/{session_id}``).
    - In-order frame consumption through the MessageRouter.
    - Reconnection with session replacement and bounded backoff.
    - Synchronous stop of reconnect scheduling on close.
    """

    def __init__(
        self,
        http: aiohttp.ClientSession,
        sessions: SessionStore,
        router: MessageRouter,
        ws_base_url: str,
        policy: Optional[ReconnectPolicy] = None,
        open_timeout: float = 30.0,
        on_error: Optional[ErrorHandler] = None,
    ):
        """
        Args:
            http: Shared aiohttp session used to open the channel.
            sessions: The controller's session store.
            router: Router that consumes every inbound frame.
            ws_base_url: Relay channel base (e.g., ws://localhost:8000).
            policy: Backoff policy for reconnects.
            open_timeout: Seconds allowed for the channel handshake.
            on_error: Called once with the terminal ChannelError.
        """
        self._http = http
        self._sessions = sessions
        self._router = router
        self.ws_base_url = ws_base_url.rstrip("/")
        self.policy = policy or ReconnectPolicy()
        self._open_timeout = open_timeout
        self._on_error = on_error

        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[StateListener] = []
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._closed_event = asyncio.Event()
        self._terminal_error: Optional[ChannelError] = None

    # ---- state --------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def terminal_error(self) -> Optional[ChannelError]:
        return self._terminal_error

    def add_state_listener(self, listener: StateListener) -> None:
        """Observe every transition as (old, new)."""
        self._listeners.append(listener)

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None:
        self._on_error = handler

    def _transition(self, new: ConnectionState) -> None:
        old = self._state
        if new not in _ALLOWED[old]:
            raise StateTransitionError(f"illegal transition {old.name} -> {new.name}")
        self._state = new
        logger.debug("connection_state", old=old.name, new=new.name)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("state_listener_failed")

    # ---- public -------------------------------------------------------------

    async def connect(self) -> Session:
        """
        Obtain a session and open the channel scoped to it.

        Returns the live session. Calling this while already connected is a
        no-op that returns the current session.

        Raises:
            SessionError: If the relay refuses the session.
            ChannelError: If the channel cannot be opened, the manager is closed,
                or a reconnect is already under way.
        """
        if self._state is ConnectionState.CLOSED:
            raise ChannelError("connection manager is closed", operation="connect")
        if self._state is ConnectionState.CONNECTED:
            current = self._sessions.current_session()
            if current is None:
                raise ChannelError("connected without a session", operation="connect")
            return current
        if self._task is not None and not self._task.done():
            raise ChannelError("reconnect already in progress", operation="connect")

        self._transition(ConnectionState.CONNECTING)
        try:
            ws, session = await self._open_channel()
        except PortalError:
            self._sessions.clear()
            if self._state is ConnectionState.CONNECTING:
                self._transition(ConnectionState.DISCONNECTED)
            raise

        self._transition(ConnectionState.CONNECTED)
        self._task = asyncio.create_task(self._supervise(ws, session))
        return session

    async def send_frame(self, frame: Dict[str, Any]) -> None:
        """
        Send one JSON frame on the open channel.

        Raises:
            ChannelError: If no channel is open.
        """
        ws = self._ws
        if ws is None or ws.closed or self._state is not ConnectionState.CONNECTED:
            raise ChannelError("no open channel", operation="send")
        await ws.send_str(dump_frame(frame))

    async def close(self) -> None:
        """
        Tear down for good: no further reconnects, channel closed.

        The CLOSED transition and the stop flag happen before the first
        await, so nothing can schedule another attempt once this is called.
        """
        if self._state is ConnectionState.CLOSED:
            return
        self._closing = True
        task, self._task = self._task, None
        ws, self._ws = self._ws, None
        self._transition(ConnectionState.CLOSED)

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if ws is not None and not ws.closed:
            await ws.close()
        self._sessions.clear()
        self._closed_event.set()
        logger.info("connection_closed")

    async def wait_closed(self) -> None:
        """
        Wait until the manager reaches CLOSED.

        Raises:
            ChannelError: The terminal error, if retries were exhausted.
        """
        await self._closed_event.wait()
        if self._terminal_error is not None:
            raise self._terminal_error

    # ---- internals ----------------------------------------------------------

    async def _open_channel(self) -> Tuple[aiohttp.ClientWebSocketResponse, Session]:
        session = await self._sessions.begin_session()
        if self._closing:
            self._sessions.clear()
            raise ChannelError("closed while connecting", operation="connect")

        await self._drop_channel()
        url = f"{self.ws_base_url}/ws/{session.session_id}"
        try:
            ws = await asyncio.wait_for(self._http.ws_connect(url), self._open_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChannelError(f"could not open channel: {e!r}", operation="open_channel") from e

        if self._closing:
            await ws.close()
            self._sessions.clear()
            raise ChannelError("closed while connecting", operation="connect")

        self._ws = ws
        self._router.begin_incarnation(session.session_id)
        logger.info("channel_open", session_id=session.session_id)
        return ws, session

    async def _drop_channel(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

    async def _supervise(self, ws: aiohttp.ClientWebSocketResponse, session: Session) -> None:
        """Reads the channel and reconnects after every drop."""
        try:
            while True:
                await self._read_channel(ws, session.session_id)
                if self._closing:
                    return
                logger.warning("channel_lost", session_id=session.session_id)
                self._transition(ConnectionState.RECONNECTING)
                reopened = await self._reconnect()
                if reopened is None:
                    return
                ws, session = reopened
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("channel_supervisor_crashed")
            if not self._closing:
                await self._fail(ChannelError(f"channel supervisor failed: {e!r}"))

    async def _read_channel(self, ws: aiohttp.ClientWebSocketResponse, session_id: str) -> None:
        async def reply(frame: Dict[str, Any]) -> None:
            await ws.send_str(dump_frame(frame))

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._router.handle_raw(msg.data, session_id, reply)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("channel_error", error=repr(ws.exception()))
                    break
                else:
                    logger.debug("frame_ignored", kind=msg.type.name)
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning("channel_read_failed", error=repr(e))
        finally:
            if self._ws is ws:
                self._ws = None
            if not ws.closed:
                with suppress(aiohttp.ClientError, ConnectionError):
                    await ws.close()

    async def _reconnect(self) -> Optional[Tuple[aiohttp.ClientWebSocketResponse, Session]]:
        max_attempts = self.policy.max_attempts
        last_error: Optional[PortalError] = None

        for attempt in range(1, max_attempts + 1):
            delay = self.policy.delay_for(attempt)
            logger.info("reconnect_scheduled", attempt=attempt, delay=round(delay, 3))
            await asyncio.sleep(delay)
            if self._closing:
                return None

            self._transition(ConnectionState.CONNECTING)
            try:
                ws, session = await self._open_channel()
            except PortalError as e:
                last_error = e
                logger.warning("reconnect_failed", attempt=attempt, error=str(e))
                if self._closing:
                    return None
                if attempt < max_attempts:
                    self._transition(ConnectionState.RECONNECTING)
                continue

            self._transition(ConnectionState.CONNECTED)
            logger.info("reconnected", attempt=attempt, session_id=session.session_id)
            return ws, session

        await self._fail(ChannelError(
            f"gave up after {max_attempts} reconnect attempts: {last_error}",
            operation="reconnect",
            attempts=max_attempts,
        ))
        return None

    async def _fail(self, error: ChannelError) -> None:
        """Enter CLOSED with a terminal error, reported exactly once."""
        if self._state is ConnectionState.CLOSED:
            return
        self._closing = True
        self._terminal_error = error
        self._task = None
        self._transition(ConnectionState.CLOSED)
        await self._drop_channel()
        self._sessions.clear()
        self._closed_event.set()
        logger.error("channel_failed", error=str(error))

        if self._on_error is not None:
            try:
                result = self._on_error(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("error_handler_failed")


__all__ = ["ConnectionManager", "StateListener", "ErrorHandler"]
