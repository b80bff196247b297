"""
PortalController - one relay session plus one inventory view.

Wires every component to a single aiohttp session and a single injected
SessionStore:

    controller = PortalController(Settings())
    async with controller:
        controller.on_delivery(save_to_disk)
        await controller.upload(b"...", "notes.txt")
"""

import os
from typing import Optional

import aiohttp
import structlog

from .core.config import Settings, settings as default_settings
from .errors import ChannelError, NoSessionError
from .inventory import (
    InventoryClient,
    InventoryNode,
    InventoryWatcher,
    NewFileListener,
    SaveResult,
)
from .relay import (
    ConnectionManager,
    ConnectionState,
    DeliveryCallback,
    MessageRouter,
    Session,
    SessionStore,
    UploadCoordinator,
    UploadResult,
)

logger = structlog.get_logger(__name__)


class PortalController:
    """
    Session and delivery protocol controller.

    Owns the HTTP session and every relay/inventory component. Use as an
    async context manager, or call ``start()`` and ``close()`` directly.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            settings: Client settings; defaults to the environment-loaded ``core.config.settings``.
            http: Optional aiohttp session. When given, the caller owns it
                and ``close()`` leaves it open.
        """
        self.settings = settings or default_settings
        self._owns_http = http is None
        self._http = http
        self._closed = False
        self._delivery_callback: Optional[DeliveryCallback] = None
        self._new_file_listener: Optional[NewFileListener] = None

        self.sessions: Optional[SessionStore] = None
        self.router: Optional[MessageRouter] = None
        self.connection: Optional[ConnectionManager] = None
        self.uploads: Optional[UploadCoordinator] = None
        self.inventory: Optional[InventoryClient] = None
        self.watcher: Optional[InventoryWatcher] = None
        if http is not None:
            self._build(http)

    def _build(self, http: aiohttp.ClientSession) -> None:
        s = self.settings
        policy = s.reconnect_policy()
        self.sessions = SessionStore(http, s.relay_url, timeout=s.request_timeout)
        self.router = MessageRouter(self.sessions)
        self.router.set_delivery_callback(self._delivery_callback)
        self.connection = ConnectionManager(
            http,
            self.sessions,
            self.router,
            s.relay_ws_url,
            policy=policy,
            open_timeout=s.request_timeout,
        )
        self.uploads = UploadCoordinator(
            http,
            self.sessions,
            s.relay_url,
            max_bytes=s.max_upload_bytes,
            timeout=s.request_timeout,
        )
        self.inventory = InventoryClient(http, s.inventory_url, timeout=s.request_timeout)
        self.watcher = InventoryWatcher(
            http,
            self.inventory,
            s.inventory_ws_url,
            policy=policy,
            on_new_file=self._new_file_listener,
        )

    # ---- lifecycle ----------------------------------------------------------

    async def __aenter__(self) -> 'PortalController':
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Create the HTTP session and components without connecting."""
        if self._closed:
            raise ChannelError("controller is closed", operation="open")
        if self._http is None:
            self._http = aiohttp.ClientSession()
            self._build(self._http)

    async def start(self, *, watch_inventory: Optional[bool] = None) -> Session:
        """
        Open the relay channel and, if enabled, the inventory watcher.

        Returns the relay session.
        """
        await self.open()
        session = await self.connection.connect()
        watch = self.settings.watch_inventory if watch_inventory is None else watch_inventory
        if watch:
            await self.watcher.start()
        logger.info("controller_started", session_id=session.session_id, watching=watch)
        return session

    async def close(self) -> None:
        """Tear down channel, watcher and (if owned) the HTTP session."""
        if self._closed:
            return
        self._closed = True
        if self.connection is not None:
            await self.connection.close()
        if self.watcher is not None:
            await self.watcher.stop()
        if self._owns_http and self._http is not None:
            await self._http.close()
        logger.info("controller_closed")

    async def wait_closed(self) -> None:
        """Block until the relay channel closes; re-raises a terminal ChannelError."""
        if self.connection is None:
            return
        await self.connection.wait_closed()

    # ---- state --------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        if self.connection is None:
            return ConnectionState.DISCONNECTED
        return self.connection.state

    @property
    def session(self) -> Optional[Session]:
        return self.sessions.current_session() if self.sessions else None

    # ---- relay --------------------------------------------------------------

    def on_delivery(self, callback: Optional[DeliveryCallback]) -> None:
        """Register the single delivery callback; a new one replaces the old."""
        self._delivery_callback = callback
        if self.router is not None:
            self.router.set_delivery_callback(callback)

    def on_new_inventory_file(self, listener: Optional[NewFileListener]) -> None:
        self._new_file_listener = listener
        if self.watcher is not None:
            self.watcher.set_listener(listener)

    async def upload(self, data: bytes, filename: str, content_type: Optional[str] = None) -> UploadResult:
        self._require_session("upload")
        return await self.uploads.upload(data, filename, content_type)

    async def upload_path(self, path: str) -> UploadResult:
        self._require_session("upload")
        return await self.uploads.upload_path(path)

    async def send_inventory_file(self, name: str) -> UploadResult:
        """
        Move a file from the inventory into the relay.

        The session is checked before anything is downloaded, and the size
        limit is checked before anything is uploaded.
        """
        self._require_session("upload")
        data = await self.inventory.fetch_file(name)
        self.uploads.check_size(len(data))
        return await self.uploads.upload(data, os.path.basename(name))

    # ---- inventory ----------------------------------------------------------

    async def fetch_tree(self) -> InventoryNode:
        await self.open()
        return await self.inventory.fetch_tree()

    async def materialize(self, filename: str, content: bytes) -> SaveResult:
        """Save a received delivery into the inventory backend."""
        await self.open()
        return await self.inventory.save_file(filename, content)

    def _require_session(self, operation: str) -> None:
        if self._closed or self.sessions is None:
            raise NoSessionError(operation=operation)
        self.sessions.require_session(operation)


__all__ = ["PortalController"]
