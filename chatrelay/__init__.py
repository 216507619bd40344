"""
chatrelay - WhatsApp message relay over two transports.

chatrelay relays messages between WhatsApp users and an automated
responder through either:

- **Session transport** ("web"): a linked personal account over a
  persistent duplex session (the session-protocol client is plugged in)
- **Poll transport** ("twilio"): the Twilio REST API, polled with a time
  watermark or fed by webhooks

Both feed one inbound pipeline (dedup, reply resolution, size-bounded
media) and one outbound dispatcher (send, optional delivery wait).

Quick Start:
    >>> from chatrelay.app.dependencies import build_dispatcher
    >>> from chatrelay.transports import Provider
    >>>
    >>> result = await build_dispatcher().send(
    ...     "+15551234567", "hi", Provider.TWILIO, wait_seconds=20
    ... )
    >>> result.raise_for_status()

Command line:
    chatrelay login | send | relay | webhook | status
"""

__version__ = "0.1.0"

from chatrelay.errors import (
    ConfigError,
    CredentialInvalidated,
    DeliveryFailed,
    MediaFetchError,
    MediaTooLarge,
    RelayError,
    TransportConnectError,
)

__all__ = [
    # Version info
    "__version__",
    # Errors
    "ConfigError",
    "CredentialInvalidated",
    "DeliveryFailed",
    "MediaFetchError",
    "MediaTooLarge",
    "RelayError",
    "TransportConnectError",
]
