"""
chatrelay media handling.
"""

from .guard import (
    POLL_MAX_MEDIA_BYTES,
    SESSION_MAX_MEDIA_BYTES,
    LoadedMedia,
    MediaGuard,
    is_remote_ref,
)
from .store import MediaStore

__all__ = [
    "LoadedMedia",
    "MediaGuard",
    "MediaStore",
    "POLL_MAX_MEDIA_BYTES",
    "SESSION_MAX_MEDIA_BYTES",
    "is_remote_ref",
]
