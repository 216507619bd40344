"""
chatrelay Transport Layer.

Two transports reach the same messaging network:

- SessionTransport ("web"): persistent duplex session of a linked
  personal account, driven by an injected session-protocol client
- TwilioPollTransport ("twilio"): Twilio REST API, polled for inbound
  messages or fed by webhooks

Both produce InboundMessage and answer through a ReplyChannel, so the
relay core never sees transport details.

Usage:
    from chatrelay.transports import create_twilio_transport, register_transport

    transport = create_twilio_transport()
    register_transport(transport)

    result = await transport.send_message("+15551234567", "Hello!")
    record = await transport.fetch_status(result.message_id)
"""

from .delivery import (
    FAILURE_STATUSES,
    SUCCESS_STATUSES,
    TERMINAL_STATUSES,
    DeliveryRecord,
    DeliveryStatus,
)
from .protocol import InboundMessage, Provider, ReplyChannel, SendResult, TransportAdapter
from .registry import (
    TransportNotFoundError,
    TransportRegistry,
    get_transport,
    get_transport_registry,
    register_transport,
    reset_transport_registry,
)
from .session import CredentialStore, SelfIdentity, SessionState, SessionTransport
from .tracking import SeenSet, Watermark
from .twilio import (
    MessageSummary,
    TwilioPollTransport,
    TwilioReplyChannel,
    create_twilio_transport,
)

__all__ = [
    "FAILURE_STATUSES",
    "SUCCESS_STATUSES",
    "TERMINAL_STATUSES",
    "CredentialStore",
    "DeliveryRecord",
    "DeliveryStatus",
    # Protocol
    "InboundMessage",
    "MessageSummary",
    "Provider",
    "ReplyChannel",
    "SeenSet",
    "SelfIdentity",
    "SendResult",
    "SessionState",
    # Implementations
    "SessionTransport",
    "TransportAdapter",
    "TransportNotFoundError",
    # Registry
    "TransportRegistry",
    "TwilioPollTransport",
    "TwilioReplyChannel",
    "Watermark",
    "create_twilio_transport",
    "get_transport",
    "get_transport_registry",
    "register_transport",
    "reset_transport_registry",
]
