"""
Session-protocol client boundary.

The session protocol itself (handshake, encryption, keep-alive) lives in
an external client library. chatrelay only needs the narrow surface
below; a factory configured via CHATRELAY_SESSION_CLIENT returns an
object satisfying SessionSocket.

Events arrive as one async stream per connection. The client owns its
heartbeat; consumers must keep pulling events promptly.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, Union, runtime_checkable

# Close codes reported by the session protocol
LOGGED_OUT_CODE = 401
RESTART_REQUIRED_CODE = 515


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    """
    Connection lifecycle event.

    Attributes:
        connection: "connecting", "open" or "close" (None for QR-only updates)
        qr: Pairing code to show the user, when pairing is needed
        status_code: Close code, on "close"
        error: Human-readable close error, on "close"
    """

    connection: str | None = None
    qr: str | None = None
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CredentialsUpdate:
    """
    New credential material to persist.

    Attributes:
        creds: Opaque credential blob (JSON-serializable)
        self_jid: Linked account JID, once known
    """

    creds: dict[str, Any]
    self_jid: str | None = None


@dataclass(frozen=True, slots=True)
class RawMessage:
    """
    One message as delivered by the session client.

    `content` mirrors the protocol's message union, e.g.
    {"conversation": "hi"} or {"imageMessage": {"caption": "..", "mimetype": ".."}}.
    """

    id: str | None
    remote_jid: str | None
    from_me: bool = False
    participant: str | None = None
    push_name: str | None = None
    timestamp: int | None = None  # Seconds since epoch
    content: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MessagesUpsert:
    """
    Batch of new or updated messages.

    Only kind == "notify" carries live inbound traffic; "append" is
    history sync.
    """

    messages: tuple[RawMessage, ...]
    kind: str = "notify"


SessionEvent = Union[ConnectionUpdate, CredentialsUpdate, MessagesUpsert]


@runtime_checkable
class SessionSocket(Protocol):
    """One connection of the session-protocol client."""

    @property
    def self_jid(self) -> str | None:
        """Linked account JID, available once open."""
        ...

    def events(self) -> AsyncIterator[SessionEvent]:
        """Stream of events for this connection; ends when the socket closes."""
        ...

    async def send_message(self, jid: str, payload: dict[str, Any]) -> str | None:
        """Send a payload ({"text": ..} or {"image": bytes, "caption": ..}); returns message id."""
        ...

    async def send_presence(self, kind: str, jid: str | None = None) -> None:
        """Send "available" (global) or "composing" (to a chat)."""
        ...

    async def read_messages(self, keys: list[dict[str, Any]]) -> None:
        """Acknowledge messages as read."""
        ...

    async def download_media(self, message: RawMessage) -> bytes:
        """Download the attachment of a media message."""
        ...

    async def close(self) -> None:
        """Close the underlying connection."""
        ...


# factory(saved_creds) -> socket; saved_creds is None when not paired yet
SocketFactory = Callable[[Union[dict[str, Any], None]], Awaitable[SessionSocket]]
