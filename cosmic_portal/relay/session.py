"""
Session Store - single owner of the relay session identifier.

One store is created per controller and injected into the router, the
lifecycle manager and the upload coordinator, so separate controllers
never share session state.
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

from ..errors import NoSessionError, SessionError
from .models import Session

logger = structlog.get_logger(__name__)


class SessionStore:
    """
    Holds the current relay session.

    Only this class replaces or clears the session; every other component
    reads it through ``current_session()`` / ``require_session()``.
    """

    def __init__(
        self,
        http: aiohttp.ClientSession,
        base_url: str,
        timeout: float = 30.0,
    ):
        """
        Args:
            http: Shared aiohttp session used for the connect call.
            base_url: Relay backend URL (e.g., http://localhost:8000).
            timeout: Per-request timeout in seconds.
        """
        self._http = http
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[Session] = None

    async def begin_session(self) -> Session:
        """
        Request a new session from the relay and make it current.

        Any previous session is replaced and becomes orphaned.

        Raises:
            SessionError: On a non-success response, transport failure,
                timeout, or a response without a session id.
        """
        url = f"{self.base_url}/connect"
        try:
            async with self._http.post(
                url,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    raise SessionError(
                        "relay refused connect",
                        operation="connect",
                        status=response.status,
                        body=body,
                    )
                try:
                    data = await response.json(content_type=None)
                    session = Session.from_response(data)
                except ValueError as e:
                    raise SessionError(
                        f"malformed connect response: {e}",
                        operation="connect",
                        status=response.status,
                        body=body,
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SessionError(f"connect request failed: {e!r}", operation="connect") from e

        previous = self._session
        self._session = session
        if previous is not None:
            logger.info(
                "session_replaced",
                session_id=session.session_id,
                orphaned_session_id=previous.session_id,
            )
        else:
            logger.info("session_started", session_id=session.session_id)
        return session

    def current_session(self) -> Optional[Session]:
        """The live session, or None."""
        return self._session

    def require_session(self, operation: str) -> Session:
        """
        The live session for an operation that cannot run without one.

        Raises:
            NoSessionError: If no session is active.
        """
        if self._session is None:
            raise NoSessionError(operation=operation)
        return self._session

    def is_current(self, session_id: str) -> bool:
        """True if ``session_id`` names the live session."""
        return self._session is not None and self._session.session_id == session_id

    def clear(self) -> None:
        """Forget the current session."""
        if self._session is not None:
            logger.info("session_cleared", session_id=self._session.session_id)
        self._session = None


__all__ = ["SessionStore"]
