"""
Error taxonomy for chatrelay.

Every failure the relay core reports is a RelayError subclass, so callers
(the CLI, the relay loop, the webhook) can decide between "fatal",
"fall back to the other transport" and "log and carry on" by type alone.

Classification:
- ConfigError: fatal, raised before any transport starts
- TransportConnectError: recoverable, triggers failover in auto mode
- CredentialInvalidated: fatal, the credential snapshot was cleared
- DeliveryFailed: reported; fatal only for a synchronous send-and-wait
- MediaTooLarge / MediaFetchError: reported; reply falls back to text
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for all chatrelay errors."""


class ConfigError(RelayError):
    """Required configuration is missing or invalid."""


class InvalidTransitionError(RelayError):
    """A state machine was asked to follow an edge it does not have."""

    def __init__(self, current: Any, requested: Any):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid session transition: {current} -> {requested}")


class TransportConnectError(RelayError):
    """
    A transport could not be connected (or dropped before opening).

    Attributes:
        provider: Provider name ("web", "twilio")
        reason: Close reason classification, if known
        status_code: Raw close/status code reported by the transport
    """

    def __init__(
        self,
        message: str,
        provider: str = "",
        reason: Any = None,
        status_code: int | None = None,
    ):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)


class CredentialInvalidated(RelayError):
    """The remote side logged the session out; credentials were deleted."""


class DeliveryFailed(RelayError):
    """
    An outbound message was rejected or reached a failure state.

    Attributes carry the provider's own fields so they can be shown
    verbatim to the operator.
    """

    def __init__(
        self,
        message: str,
        message_id: str | None = None,
        status: str | None = None,
        error_code: int | str | None = None,
        error_message: str | None = None,
        more_info: str | None = None,
        http_status: int | None = None,
    ):
        self.message_id = message_id
        self.status = status
        self.error_code = error_code
        self.error_message = error_message
        self.more_info = more_info
        self.http_status = http_status
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "message_id": self.message_id,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "more_info": self.more_info,
            "http_status": self.http_status,
        }


class MediaFetchError(RelayError):
    """Media could not be retrieved (HTTP failure, missing file, bad ref)."""


class MediaTooLarge(MediaFetchError):
    """Media exceeded the transport's byte cap."""

    def __init__(self, size: int, limit: int, exact: bool = True):
        self.size = size
        self.limit = limit
        self.exact = exact
        observed = _format_mb(size) if exact else f"at least {_format_mb(size)}"
        super().__init__(
            f"Media exceeds {limit // (1024 * 1024)}MB limit "
            f"(got {observed}, {size} bytes)"
        )


def _format_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.1f}MB"
