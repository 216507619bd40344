"""
Text and media extraction from raw session messages.
"""
from __future__ import annotations

from typing import Any

# Protocol message key -> placeholder kind, in placeholder priority order
MEDIA_KINDS: tuple[tuple[str, str], ...] = (
    ("imageMessage", "image"),
    ("videoMessage", "video"),
    ("audioMessage", "audio"),
    ("documentMessage", "document"),
    ("stickerMessage", "sticker"),
)


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_text(content: dict[str, Any] | None) -> str | None:
    """
    Extract text by priority: plain body, extended text, media caption.
    """
    if not content:
        return None

    text = _clean(content.get("conversation"))
    if text:
        return text

    extended = content.get("extendedTextMessage") or {}
    text = _clean(extended.get("text"))
    if text:
        return text

    for key in ("imageMessage", "videoMessage"):
        caption = _clean((content.get(key) or {}).get("caption"))
        if caption:
            return caption

    return None


def media_kind(content: dict[str, Any] | None) -> str | None:
    """Kind of the attached media ("image", "video", ...), if any."""
    if not content:
        return None
    for key, kind in MEDIA_KINDS:
        if content.get(key):
            return kind
    return None


def media_placeholder(content: dict[str, Any] | None) -> str | None:
    """Placeholder such as "<media:image>" for media-only messages."""
    kind = media_kind(content)
    return f"<media:{kind}>" if kind else None


def media_mimetype(content: dict[str, Any] | None) -> str | None:
    if not content:
        return None
    for key, _ in MEDIA_KINDS:
        node = content.get(key)
        if node and node.get("mimetype"):
            return node["mimetype"]
    return None
