"""
Inventory Sync Client - read-only view of the inventory backend.

Keeps the latest tree snapshot plus an ordered list of every file name the
backend has reported, either through a tree fetch or through the push
channel (see ``watcher.InventoryWatcher``). Failed fetches never clear
what is already known.
"""

import asyncio
from typing import Any, List, Optional
from urllib.parse import quote

import aiohttp
import structlog

from ..errors import InventoryError
from ..relay import codec
from .models import InventoryNode, SaveResult

logger = structlog.get_logger(__name__)


class InventoryClient:
    """
    Client for the inventory backend's HTTP API.

    Supports tree snapshots, raw file download, and saving received files
    back into the inventory.
    """

    def __init__(
        self,
        http: aiohttp.ClientSession,
        base_url: str,
        timeout: float = 30.0,
    ):
        """
        Args:
            http: Shared aiohttp session.
            base_url: Inventory backend URL (e.g., http://localhost:8080).
            timeout: Per-request timeout in seconds.
        """
        self._http = http
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._tree: Optional[InventoryNode] = None
        self._known: List[str] = []

    @property
    def tree(self) -> Optional[InventoryNode]:
        """Latest snapshot, or None before the first successful fetch."""
        return self._tree

    @property
    def known_files(self) -> List[str]:
        """Every file name reported so far, oldest first, without duplicates."""
        return list(self._known)

    def file_url(self, name: str) -> str:
        """URL serving the raw bytes of ``name``."""
        return f"{self.base_url}/files/{quote(name)}"

    def record_new_file(self, name: str) -> bool:
        """Remember a name from the push channel; False if already known."""
        if name in self._known:
            return False
        self._known.append(name)
        logger.info("inventory_file_added", name=name)
        return True

    async def fetch_tree(self) -> InventoryNode:
        """
        Fetch the full tree and replace the cached snapshot.

        Raises:
            InventoryError: On transport failure, a non-success status, or a
                body that is not a tree. The previous snapshot is kept.
        """
        data = await self._get_json("/api/tree", operation="fetch_tree")
        try:
            tree = InventoryNode.from_dict(data)
        except ValueError as e:
            raise InventoryError(f"malformed tree: {e}", operation="fetch_tree") from e

        self._tree = tree
        for name in tree.leaf_names():
            if name not in self._known:
                self._known.append(name)
        logger.info("inventory_tree_fetched", files=len(self._known))
        return tree

    async def fetch_file(self, name: str) -> bytes:
        """
        Download the raw bytes of a named file.

        Raises:
            InventoryError: If the file cannot be fetched.
        """
        try:
            async with self._http.get(self.file_url(name), timeout=self._timeout) as response:
                if response.status >= 400:
                    raise InventoryError(
                        f"could not fetch {name!r}",
                        operation="fetch_file",
                        status=response.status,
                        body=await response.text(),
                    )
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise InventoryError(f"fetch of {name!r} failed: {e!r}", operation="fetch_file") from e

    async def save_file(self, filename: str, content: bytes) -> SaveResult:
        """
        Store a file in the inventory backend.

        The content travels hex-encoded, the same wire format the relay uses.

        Raises:
            InventoryError: If the backend rejects the file.
        """
        payload = {"filename": filename, "fileContent": codec.encode(content)}
        try:
            async with self._http.post(
                f"{self.base_url}/api/save-file",
                json=payload,
                timeout=self._timeout,
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    raise InventoryError(
                        f"could not save {filename!r}",
                        operation="save_file",
                        status=response.status,
                        body=body,
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise InventoryError(f"save of {filename!r} failed: {e!r}", operation="save_file") from e
        except ValueError as e:
            raise InventoryError(f"malformed save response: {e}", operation="save_file") from e

        try:
            result = SaveResult.from_response(data, filename, len(content))
        except (TypeError, ValueError) as e:
            raise InventoryError(f"malformed save response: {e}", operation="save_file") from e
        logger.info("inventory_file_saved", filename=result.filename, size=result.size_bytes)
        return result

    async def _get_json(self, path: str, operation: str) -> Any:
        try:
            async with self._http.get(f"{self.base_url}{path}", timeout=self._timeout) as response:
                if response.status >= 400:
                    raise InventoryError(
                        "inventory backend returned an error",
                        operation=operation,
                        status=response.status,
                        body=await response.text(),
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise InventoryError(f"request failed: {e!r}", operation=operation) from e
        except ValueError as e:
            raise InventoryError(f"invalid JSON: {e}", operation=operation) from e


__all__ = ["InventoryClient"]
