"""Pytest fixtures for Cosmic Portal tests.

Both backends are faked with real aiohttp applications served on
localhost, so the client code talks HTTP and WebSocket exactly as it
would in production.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from cosmic_portal.core.config import Settings


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(0.01)


# --- Fake relay backend ---

class FakeRelay:
    """In-process relay backend: /connect, /upload and /ws/{session_id}."""

    def __init__(self):
        self.session_ids: List[str] = []
        self.issued: List[str] = []
        self.connect_calls = 0
        self.connect_failures = 0
        self.connect_delay = 0.0
        self.connect_body: Optional[Dict[str, Any]] = None
        self.refuse_channels = False
        self.upload_status = 200
        self.uploads: List[Dict[str, Any]] = []
        self.channels: Dict[str, web.WebSocketResponse] = {}
        self.opened: asyncio.Queue = asyncio.Queue()
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.server: Optional[TestServer] = None

        self.app = web.Application()
        self.app.router.add_post("/connect", self._connect)
        self.app.router.add_post("/upload", self._upload)
        self.app.router.add_get("/ws/{session_id}", self._channel)

    @property
    def http_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.server.host}:{self.server.port}"

    async def _connect(self, request: web.Request) -> web.Response:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            return web.json_response({"detail": "relay overloaded"}, status=503)
        if self.connect_body is not None:
            return web.json_response(self.connect_body)
        if self.session_ids:
            session_id = self.session_ids.pop(0)
        else:
            session_id = f"s{len(self.issued) + 1}"
        self.issued.append(session_id)
        return web.json_response({
            "session_id": session_id,
            "message": "Connected to the black hole",
            "next_step": f"open /ws/{session_id}",
        })

    async def _upload(self, request: web.Request) -> web.Response:
        form = await request.post()
        upload = form["file"]
        content = upload.file.read()
        record = {
            "session_id": form.get("session_id"),
            "filename": upload.filename,
            "content_type": upload.content_type,
            "content": content,
        }
        self.uploads.append(record)
        if self.upload_status >= 400:
            return web.json_response({"detail": "file rejected"}, status=self.upload_status)
        return web.json_response({
            "file_id": f"u{len(self.uploads)}",
            "filename": upload.filename,
            "size": len(content),
            "message": "File consumed by the black hole",
        })

    async def _channel(self, request: web.Request) -> web.StreamResponse:
        session_id = request.match_info["session_id"]
        if self.refuse_channels:
            return web.Response(status=403, text="channel refused")
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.channels[session_id] = ws
        self.opened.put_nowait(session_id)
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.inbox.put_nowait((session_id, json.loads(msg.data)))
        return ws

    async def push(self, session_id: str, frame: Any) -> None:
        """Send a frame (dict or raw text) to a connected client."""
        text = frame if isinstance(frame, str) else json.dumps(frame)
        await self.channels[session_id].send_str(text)

    async def drop(self, session_id: str) -> None:
        await self.channels[session_id].close()

    async def next_frame(self, timeout: float = 3.0) -> Tuple[str, Dict[str, Any]]:
        return await asyncio.wait_for(self.inbox.get(), timeout)

    async def next_opened(self, timeout: float = 3.0) -> str:
        return await asyncio.wait_for(self.opened.get(), timeout)

    async def close_channels(self) -> None:
        for ws in list(self.channels.values()):
            if not ws.closed:
                await ws.close()


# --- Fake inventory backend ---

class FakeInventory:
    """In-process inventory backend: tree, files, save-file and push channel."""

    def __init__(self):
        self.tree: Any = {"name": "TrashBackup", "isDir": True, "children": []}
        self.tree_status = 200
        self.files: Dict[str, bytes] = {}
        self.saved: List[Dict[str, Any]] = []
        self.watchers: List[web.WebSocketResponse] = []
        self.watch_attempts = 0
        self.refuse_watchers = False
        self.server: Optional[TestServer] = None

        self.app = web.Application()
        self.app.router.add_get("/api/tree", self._tree)
        self.app.router.add_get("/files/{name:.+}", self._file)
        self.app.router.add_post("/api/save-file", self._save)
        self.app.router.add_get("/ws", self._ws)

    @property
    def http_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.server.host}:{self.server.port}/ws"

    async def _tree(self, request: web.Request) -> web.Response:
        if self.tree_status >= 400:
            return web.Response(status=self.tree_status, text="Failed to build file tree")
        return web.json_response(self.tree)

    async def _file(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if name not in self.files:
            return web.Response(status=404, text="404 page not found")
        return web.Response(body=self.files[name], content_type="application/octet-stream")

    async def _save(self, request: web.Request) -> web.Response:
        body = await request.json()
        content = bytes.fromhex(body["fileContent"])
        self.saved.append({"filename": body["filename"], "fileContent": body["fileContent"], "content": content})
        self.files[body["filename"]] = content
        return web.json_response({
            "success": True,
            "filename": body["filename"],
            "size": len(content),
            "path": f"TrashBackup/{body['filename']}",
        })

    async def _ws(self, request: web.Request) -> web.StreamResponse:
        self.watch_attempts += 1
        if self.refuse_watchers:
            return web.Response(status=403, text="watch refused")
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.watchers.append(ws)
        async for _ in ws:
            pass
        return ws

    async def push(self, name: str) -> None:
        for ws in list(self.watchers):
            if not ws.closed:
                await ws.send_str(name)

    async def close_channels(self) -> None:
        for ws in list(self.watchers):
            if not ws.closed:
                await ws.close()


# --- Server fixtures ---

@pytest.fixture
async def relay():
    """Running fake relay backend."""
    fake = FakeRelay()
    server = TestServer(fake.app)
    await server.start_server()
    fake.server = server
    yield fake
    await fake.close_channels()
    await server.close()


@pytest.fixture
async def inventory_backend():
    """Running fake inventory backend."""
    fake = FakeInventory()
    server = TestServer(fake.app)
    await server.start_server()
    fake.server = server
    yield fake
    await fake.close_channels()
    await server.close()


@pytest.fixture
async def http():
    """Client-side aiohttp session."""
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def unreachable_url() -> str:
    """An HTTP URL nothing listens on."""
    return "http://127.0.0.1:1"


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory fixture for fast-retrying settings."""
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "reconnect_max_attempts": 3,
            "reconnect_initial_delay": 0.01,
            "reconnect_backoff_multiplier": 1.0,
            "reconnect_max_delay": 0.05,
            "reconnect_jitter": 0.0,
            "request_timeout": 5.0,
            "watch_inventory": False,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


# --- Sample data fixtures ---

@pytest.fixture
def hello_delivery() -> dict:
    """The delivery frame for a five-byte text file."""
    return {
        "type": "file_delivery",
        "file_id": "f1",
        "filename": "hello.txt",
        "file_size": 5,
        "content_type": "text/plain",
        "uploaded_at": "2026-10-19T12:00:00Z",
        "file_content": "68656c6c6f",
    }


@pytest.fixture
def two_file_tree() -> dict:
    """One directory holding two files."""
    return {
        "name": "TrashBackup",
        "isDir": True,
        "children": [
            {"name": "report.pdf", "isDir": False},
            {"name": "photo.png", "isDir": False},
        ],
    }


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Async poller: ``await wait_until(lambda: cond)``."""
    return _wait_until
