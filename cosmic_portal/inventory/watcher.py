"""
Push subscription to the inventory backend's new-file channel.

The channel sends one bare filename per text frame. Each (re)connect
triggers a full tree refetch so names pushed while the watcher was offline
still reach the known-files list. The watcher gives up after
``max_attempts`` consecutive failed connection attempts, the same bound
the relay channel applies to its reconnects.
"""

import asyncio
import inspect
from contextlib import suppress
from typing import Any, Callable, Optional

import aiohttp
import structlog

from ..errors import ChannelError, InventoryError
from ..relay.backoff import ReconnectPolicy
from .client import InventoryClient

logger = structlog.get_logger(__name__)

NewFileListener = Callable[[str], Any]


class InventoryWatcher:
    """Keeps an InventoryClient current from the backend's push channel."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        client: InventoryClient,
        ws_url: str,
        policy: Optional[ReconnectPolicy] = None,
        on_new_file: Optional[NewFileListener] = None,
    ):
        self._http = http
        self._client = client
        self.ws_url = ws_url
        self.policy = policy or ReconnectPolicy()
        self._listener = on_new_file
        self._task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()
        self._stopped = asyncio.Event()
        self._error: Optional[ChannelError] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_listener(self, listener: Optional[NewFileListener]) -> None:
        self._listener = listener

    async def start(self) -> None:
        """Starts the watcher background loop."""
        if self.running:
            return
        self._stopped.clear()
        self._error = None
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stops the watcher and closes its channel."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._connected.clear()
        self._stopped.set()

    async def wait_connected(self) -> None:
        await self._connected.wait()

    async def wait_closed(self) -> None:
        """Wait for the watcher to stop; re-raises a terminal ChannelError."""
        await self._stopped.wait()
        if self._error is not None:
            raise self._error

    async def _run(self) -> None:
        failures = 0
        try:
            while True:
                opened = False
                try:
                    async with self._http.ws_connect(self.ws_url) as ws:
                        opened = True
                        failures = 0
                        logger.info("inventory_watch_connected", url=self.ws_url)
                        await self._refresh()
                        self._connected.set()
                        await self._consume(ws)
                    logger.warning("inventory_watch_lost")
                except (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError) as e:
                    if opened:
                        logger.warning("inventory_watch_lost", error=repr(e))
                    else:
                        failures += 1
                        logger.warning("inventory_watch_failed", attempt=failures, error=repr(e))
                    if failures >= self.policy.max_attempts:
                        self._error = ChannelError(
                            f"inventory push channel gave up after {failures} attempts",
                            operation="inventory_watch",
                            attempts=failures,
                        )
                        logger.error("inventory_watch_stopped", error=str(self._error))
                        self._stopped.set()
                        return
                self._connected.clear()

                # a clean drop retries after the first backoff step
                delay = self.policy.delay_for(max(failures, 1))
                logger.info("inventory_watch_retry", attempt=failures, delay=round(delay, 3))
                await asyncio.sleep(delay)
        finally:
            self._connected.clear()

    async def _refresh(self) -> None:
        try:
            await self._client.fetch_tree()
        except InventoryError as e:
            logger.warning("inventory_refresh_failed", error=str(e))

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                name = msg.data.strip()
                if not name:
                    continue
                if self._client.record_new_file(name):
                    await self._notify(name)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("inventory_watch_error", error=repr(ws.exception()))
                break

    async def _notify(self, name: str) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            result = listener(name)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("new_file_listener_failed", name=name)


__all__ = ["InventoryWatcher", "NewFileListener"]
