"""
MediaGuard for chatrelay.

Fetches media from a URL or local path and enforces a byte cap before
anything is handed to a transport. The cap depends on the transport:
the poll transport's hosting path is size-constrained, the session
transport uploads directly and accepts more.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

import httpx

from chatrelay.errors import MediaFetchError, MediaTooLarge

logger = logging.getLogger(__name__)

MB = 1024 * 1024
SESSION_MAX_MEDIA_BYTES = 16 * MB
POLL_MAX_MEDIA_BYTES = 5 * MB


@dataclass(frozen=True, slots=True)
class LoadedMedia:
    """
    Media bytes that passed the size check.

    Attributes:
        data: Raw bytes (never larger than the cap they were loaded with)
        content_type: MIME type, if known
        source: Original reference (URL or path)
    """

    data: bytes
    content_type: str | None = None
    source: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_remote(self) -> bool:
        return is_remote_ref(self.source)

    @property
    def kind(self) -> str:
        """Coarse kind ("image", "video", "audio", "document") from MIME type."""
        major = (self.content_type or "").split("/", 1)[0]
        return major if major in ("image", "video", "audio") else "document"


def is_remote_ref(ref: str) -> bool:
    return ref.lower().startswith(("http://", "https://"))


class MediaGuard:
    """
    Size-bounded media loader.

    Example:
        guard = MediaGuard()
        media = await guard.fetch("https://example.com/cat.png", max_bytes=POLL_MAX_MEDIA_BYTES)
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ):
        """
        Args:
            client: Shared HTTP client (a short-lived one is created per fetch if None)
            timeout_seconds: Timeout for remote fetches
        """
        self._client = client
        self._timeout = timeout_seconds

    async def fetch(self, ref: str, max_bytes: int) -> LoadedMedia:
        """
        Load media from an http(s) URL or a local path / file:// URL.

        Raises:
            MediaTooLarge: If the payload exceeds max_bytes
            MediaFetchError: If the media cannot be retrieved
        """
        if not ref:
            raise MediaFetchError("Empty media reference")
        if ref.startswith("file://"):
            ref = ref[len("file://"):]

        if is_remote_ref(ref):
            return await self._fetch_remote(ref, max_bytes)
        return await self._fetch_local(ref, max_bytes)

    def accept(
        self,
        data: bytes,
        content_type: str | None,
        max_bytes: int,
        source: str = "",
    ) -> LoadedMedia:
        """
        Bound an already downloaded buffer (inbound session media).

        Raises:
            MediaTooLarge: If the buffer exceeds max_bytes
        """
        if len(data) > max_bytes:
            raise MediaTooLarge(size=len(data), limit=max_bytes)
        return LoadedMedia(data=data, content_type=content_type, source=source)

    async def _fetch_remote(self, url: str, max_bytes: int) -> LoadedMedia:
        logger.debug(f"Fetching media: {url[:80]}")

        if self._client is not None:
            return await self._stream(self._client, url, max_bytes)

        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            return await self._stream(client, url, max_bytes)

    async def _stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        max_bytes: int,
    ) -> LoadedMedia:
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise MediaFetchError(f"Failed to fetch media: HTTP {response.status_code}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise MediaTooLarge(size=int(declared), limit=max_bytes)

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > max_bytes:
                        raise MediaTooLarge(size=len(buffer), limit=max_bytes, exact=False)

                content_type = response.headers.get("content-type")
        except httpx.HTTPError as e:
            raise MediaFetchError(f"Failed to fetch media: {e}") from e

        logger.debug(f"Fetched {len(buffer)} bytes, type={content_type}")
        return LoadedMedia(data=bytes(buffer), content_type=content_type, source=url)

    async def _fetch_local(self, ref: str, max_bytes: int) -> LoadedMedia:
        path = Path(ref).expanduser()
        try:
            size = path.stat().st_size
        except OSError as e:
            raise MediaFetchError(f"Cannot read media file {path}: {e}") from e

        if size > max_bytes:
            raise MediaTooLarge(size=size, limit=max_bytes)

        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise MediaFetchError(f"Cannot read media file {path}: {e}") from e

        # File may have grown between stat and read
        if len(data) > max_bytes:
            raise MediaTooLarge(size=len(data), limit=max_bytes)

        content_type, _ = mimetypes.guess_type(path.name)
        return LoadedMedia(data=data, content_type=content_type, source=str(path))
