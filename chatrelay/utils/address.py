"""
Address helpers shared by both transports.

The session transport addresses chats by JID ("15551234567@s.whatsapp.net"),
the poll transport by prefixed E.164 ("whatsapp:+15551234567"). Inbound
messages always carry plain E.164 ("+15551234567").
"""
from __future__ import annotations

USER_JID_SUFFIX = "@s.whatsapp.net"
WHATSAPP_PREFIX = "whatsapp:"

_IGNORED_JID_SUFFIXES = ("@status", "@broadcast")


def normalize_e164(number: str) -> str:
    """
    Normalize a phone number to "+<digits>".

    Strips the "whatsapp:" prefix, spaces, dashes and parentheses.
    """
    number = number.strip()
    if number.startswith(WHATSAPP_PREFIX):
        number = number[len(WHATSAPP_PREFIX):]
    digits = "".join(c for c in number if c.isdigit())
    return f"+{digits}"


def with_whatsapp_prefix(number: str) -> str:
    """Ensure the "whatsapp:+<digits>" form expected by the Twilio API."""
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{normalize_e164(number)}"


def to_whatsapp_jid(number: str) -> str:
    """Convert an E.164 number (or an existing JID) to a user JID."""
    if "@" in number:
        return number
    digits = normalize_e164(number).lstrip("+")
    return f"{digits}{USER_JID_SUFFIX}"


def jid_to_e164(jid: str | None) -> str | None:
    """
    Derive E.164 from a JID.

    Device suffixes ("123:4@s.whatsapp.net") are dropped. Returns None
    when the user part carries no digits.
    """
    if not jid:
        return None
    user = jid.split("@", 1)[0].split(":", 1)[0]
    digits = "".join(c for c in user if c.isdigit())
    if not digits:
        return None
    return f"+{digits}"


def is_ignored_chat(jid: str) -> bool:
    """Status updates and broadcast lists are never relayed."""
    return jid.endswith(_IGNORED_JID_SUFFIXES)
