"""
Inbound media store.

Saves media downloaded from inbound messages so the reply resolver can
be handed a local path.
"""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class MediaStore:
    """Writes media buffers into a directory under random names."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def save(self, data: bytes, content_type: str | None = None) -> Path:
        """
        Persist a buffer and return its path.

        The extension is derived from the MIME type when one is known.
        """
        extension = ""
        if content_type:
            mime = content_type.split(";", 1)[0].strip()
            extension = mimetypes.guess_extension(mime) or ""

        path = self._directory / f"{uuid.uuid4().hex}{extension}"
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Saved {len(data)} bytes of inbound media to {path}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
