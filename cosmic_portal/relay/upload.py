"""
Upload Coordinator - pushes local files into the relay.

Every upload is an independent multipart request; concurrent uploads do
not block one another and each call gets back the response to its own
request.
"""

import asyncio
import mimetypes
import os
from typing import Optional

import aiohttp
import structlog
from pydantic import ValidationError

from ..errors import PayloadTooLargeError, UploadError
from .models import UploadResult
from .session import SessionStore

logger = structlog.get_logger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024


class UploadCoordinator:
    """Issues ``POST /upload`` requests tagged with the live session id."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        sessions: SessionStore,
        base_url: str,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        timeout: float = 30.0,
    ):
        """
        Args:
            http: Shared aiohttp session.
            sessions: The controller's session store.
            base_url: Relay backend URL.
            max_bytes: Client-side payload ceiling.
            timeout: Per-upload timeout in seconds.
        """
        self._http = http
        self._sessions = sessions
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def check_size(self, size: int) -> None:
        """Raise PayloadTooLargeError if ``size`` is over the limit."""
        if size > self.max_bytes:
            raise PayloadTooLargeError(size, self.max_bytes)

    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload one file into the relay.

        Args:
            data: Raw file bytes.
            filename: Name the receiving client will see.
            content_type: MIME type; guessed from the filename when omitted.

        Returns:
            UploadResult echoing the relay's file id.

        Raises:
            NoSessionError: No live session (no request is made).
            PayloadTooLargeError: ``data`` exceeds the limit (no request is made).
            UploadError: The relay rejected the upload or the transport failed.
        """
        session = self._sessions.require_session("upload")
        self.check_size(len(data))

        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type=content_type)
        form.add_field("session_id", session.session_id)

        logger.info(
            "upload_started",
            filename=filename,
            size=len(data),
            session_id=session.session_id,
        )
        try:
            async with self._http.post(
                f"{self.base_url}/upload",
                data=form,
                timeout=self._timeout,
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    logger.error("upload_rejected", filename=filename, status=response.status)
                    raise UploadError("relay rejected upload", status=response.status, body=body)
                try:
                    result = UploadResult.model_validate_json(body)
                except ValidationError as e:
                    raise UploadError(
                        f"malformed upload response ({e.error_count()} errors)",
                        status=response.status,
                        body=body,
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("upload_failed", filename=filename, error=repr(e))
            raise UploadError(f"upload request failed: {e!r}") from e

        logger.info("upload_completed", filename=result.filename, file_id=result.file_id)
        return result

    async def upload_path(self, path: str, content_type: Optional[str] = None) -> UploadResult:
        """Upload a local file under its base name; size is checked before reading."""
        self._sessions.require_session("upload")
        self.check_size(os.path.getsize(path))
        with open(path, "rb") as f:
            data = f.read()
        return await self.upload(data, os.path.basename(path), content_type)


__all__ = ["UploadCoordinator", "DEFAULT_MAX_UPLOAD_BYTES"]
