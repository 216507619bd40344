"""
chatrelay utilities.
"""

from .address import (
    is_ignored_chat,
    jid_to_e164,
    normalize_e164,
    to_whatsapp_jid,
    with_whatsapp_prefix,
)
from .loading import load_object

__all__ = [
    "is_ignored_chat",
    "jid_to_e164",
    "load_object",
    "normalize_e164",
    "to_whatsapp_jid",
    "with_whatsapp_prefix",
]
