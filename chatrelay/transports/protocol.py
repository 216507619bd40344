"""
Transport Adapter Protocol for chatrelay.

Defines the canonical message shape both transports produce and the
interface the relay core uses to talk back through them.

The session transport (persistent duplex connection) and the poll
transport (REST polling) have nothing in common at the wire level;
everything above this module only sees InboundMessage, SendResult and
ReplyChannel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from chatrelay.media import LoadedMedia


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    """Transport identifiers."""

    WEB = "web"  # Session transport (linked personal account)
    TWILIO = "twilio"  # Poll transport (REST API)


@dataclass(frozen=True, kw_only=True, slots=True)
class InboundMessage:
    """
    Canonical inbound message produced by either transport.

    `id` is unique within one transport's namespace only; two transports
    may legitimately reuse the same id.

    Attributes:
        id: Transport-scoped message identifier
        from_address: Sender in E.164 form
        to_address: Receiving (own) address, "me" when unknown
        body: Extracted text or a "<media:kind>" placeholder
        provider: Transport that produced the message
        timestamp: When the message was created (UTC)
        chat_id: Transport-native address used to reply (JID or whatsapp:+...)
        push_name: Sender display name, if the transport exposes one
        media_path: Local path of downloaded inbound media
        media_type: MIME type of the inbound media
        media_url: Remote URL of inbound media (webhook ingress)
    """

    id: str
    from_address: str
    to_address: str
    body: str
    provider: Provider
    timestamp: datetime = field(default_factory=_utc_now)
    chat_id: str = ""
    push_name: str | None = None
    media_path: str | None = None
    media_type: str | None = None
    media_url: str | None = None

    @property
    def media_ref(self) -> str | None:
        """Local path if downloaded, else remote URL."""
        return self.media_path or self.media_url

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.provider.value, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.from_address,
            "to": self.to_address,
            "body": self.body[:100] + "..." if len(self.body) > 100 else self.body,
            "provider": self.provider.value,
            "timestamp": self.timestamp.isoformat(),
            "media_path": self.media_path,
            "media_type": self.media_type,
            "media_url": self.media_url,
        }


@dataclass(frozen=True, slots=True)
class SendResult:
    """
    Result of sending a message via transport.

    Attributes:
        message_id: Platform-specific message identifier
        provider: Transport that accepted the message
        to: Transport-native recipient address
        status: Initial provider status, if reported
    """

    message_id: str
    provider: Provider
    to: str = ""
    status: str | None = None


@runtime_checkable
class ReplyChannel(Protocol):
    """
    Per-conversation handle used by the inbound pipeline to answer.

    Created by a transport for one inbound message; bound to its chat.
    """

    @property
    def max_media_bytes(self) -> int:
        """Byte cap for outbound media on this transport."""
        ...

    async def send_composing(self) -> None:
        """Show a typing indicator (no-op where unsupported)."""
        ...

    async def reply(self, text: str) -> SendResult:
        """Send a text reply."""
        ...

    async def send_media(
        self,
        media: LoadedMedia,
        caption: str | None = None,
    ) -> SendResult:
        """Send a media reply with an optional caption."""
        ...


@runtime_checkable
class TransportAdapter(Protocol):
    """
    Bidirectional transport adapter.

    Implementations:
    - SessionTransport (persistent duplex session)
    - TwilioPollTransport (REST polling)
    """

    @property
    def channel_id(self) -> str:
        """
        Unique identifier for this transport channel.

        Used to look up the transport in the registry. Matches a
        Provider value.
        """
        ...

    def reply_channel(self, message: InboundMessage) -> ReplyChannel:
        """Create a reply handle bound to the message's chat."""
        ...
