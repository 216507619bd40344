"""
Outbound Dispatcher for chatrelay.

One-shot sends through either transport:

- web: connect (no pairing prompt), composing, send, close. Reported as
  accepted; the session protocol offers no delivery tracking.
- twilio: send, then optionally poll the message status until it is
  terminal or the caller's deadline passes. A timeout is not an error.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chatrelay.errors import DeliveryFailed, MediaFetchError, TransportConnectError
from chatrelay.media import POLL_MAX_MEDIA_BYTES, SESSION_MAX_MEDIA_BYTES, MediaGuard, is_remote_ref
from chatrelay.transports import (
    DeliveryRecord,
    DeliveryStatus,
    Provider,
    SessionTransport,
    TwilioPollTransport,
)
from chatrelay.transports.session import media_payload
from chatrelay.utils import to_whatsapp_jid

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    ACCEPTED = "accepted"  # Sent; not tracked (or not waited for)
    DELIVERED = "delivered"  # Reached delivered/read
    FAILED = "failed"  # Rejected, or reached a failure status
    TIMED_OUT = "timed_out"  # Deadline passed; may still be in flight


@dataclass
class DispatchResult:
    """
    Result of one outbound send.

    Attributes:
        provider: Transport used
        to: Recipient as given by the caller
        message_id: Provider message id (None if rejected)
        outcome: What the dispatcher observed
        record: Delivery record (poll transport only)
        error: Failure details when outcome is FAILED
    """

    provider: Provider
    to: str
    message_id: str | None
    outcome: DispatchOutcome
    record: DeliveryRecord | None = None
    error: DeliveryFailed | None = None

    @property
    def success(self) -> bool:
        return self.outcome != DispatchOutcome.FAILED

    def raise_for_status(self) -> "DispatchResult":
        """Raise DeliveryFailed if the send failed; otherwise return self."""
        if self.outcome == DispatchOutcome.FAILED:
            raise self.error or DeliveryFailed(
                f"Delivery failed for {self.message_id}", message_id=self.message_id
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "to": self.to,
            "message_id": self.message_id,
            "outcome": self.outcome.value,
            "status": self.record.status.value if self.record else None,
            "error": self.error.to_dict() if self.error else None,
        }


class OutboundDispatcher:
    """
    Sends one message through the selected transport.

    Transports are built lazily through factories so that a web send
    never requires Twilio configuration and vice versa.

    Example:
        dispatcher = OutboundDispatcher(
            session_factory=lambda: SessionTransport(store, socket_factory),
            twilio_factory=create_twilio_transport,
        )
        result = await dispatcher.send("+15551234567", "hi", Provider.TWILIO, wait_seconds=20)
        result.raise_for_status()
    """

    def __init__(
        self,
        session_factory: Callable[[], SessionTransport] | None = None,
        twilio_factory: Callable[[], TwilioPollTransport] | None = None,
        media_guard: MediaGuard | None = None,
    ):
        self._session_factory = session_factory
        self._twilio_factory = twilio_factory
        self._media_guard = media_guard or MediaGuard()

    async def send(
        self,
        to: str,
        body: str,
        provider: Provider,
        media_url: str | None = None,
        wait_seconds: float = 0,
        poll_seconds: float = 2,
        fallback: bool = False,
    ) -> DispatchResult:
        """
        Send a message.

        Args:
            to: Recipient phone number (E.164, with or without "+")
            body: Text body (the caption when media is attached)
            provider: Transport to use (already resolved)
            media_url: http(s) URL or local path of an attachment
            wait_seconds: Delivery wait deadline (poll transport, 0 = don't wait)
            poll_seconds: Seconds between status polls
            fallback: Retry through twilio when the session cannot be opened
                (auto selection). A logged-out session never falls back.

        Raises:
            ConfigError: If the transport is not configured
            TransportConnectError: If the session could not be opened
            MediaTooLarge / MediaFetchError: If the attachment is unusable
        """
        if provider == Provider.WEB:
            try:
                return await self._send_session(to, body, media_url)
            except TransportConnectError as e:
                if not fallback or self._twilio_factory is None:
                    raise
                logger.warning(f"Web send failed ({e}); falling back to twilio")
        return await self._send_twilio(to, body, media_url, wait_seconds, poll_seconds)

    async def _send_session(self, to: str, body: str, media_url: str | None) -> DispatchResult:
        if self._session_factory is None:
            raise TransportConnectError("Session transport is not configured", provider="web")

        media = None
        if media_url:
            media = await self._media_guard.fetch(media_url, SESSION_MAX_MEDIA_BYTES)

        jid = to_whatsapp_jid(to)
        transport = self._session_factory()
        try:
            await transport.connect(show_pairing_prompt=False)
            await transport.send_presence("composing", jid)
            payload = media_payload(media, body) if media is not None else {"text": body}
            result = await transport.send_message(jid, payload)
        finally:
            await transport.close()

        logger.info(f"Sent via web: {result.message_id} -> {jid}{' (media)' if media else ''}")
        return DispatchResult(
            provider=Provider.WEB,
            to=to,
            message_id=result.message_id,
            outcome=DispatchOutcome.ACCEPTED,
        )

    async def _send_twilio(
        self,
        to: str,
        body: str,
        media_url: str | None,
        wait_seconds: float,
        poll_seconds: float,
    ) -> DispatchResult:
        if self._twilio_factory is None:
            raise TransportConnectError("Twilio transport is not configured", provider="twilio")

        if media_url:
            if not is_remote_ref(media_url):
                raise MediaFetchError(
                    f"Twilio needs a publicly reachable http(s) media URL, got {media_url}"
                )
            # Enforce the cap before Twilio tries to fetch it
            await self._media_guard.fetch(media_url, POLL_MAX_MEDIA_BYTES)

        transport = self._twilio_factory()
        try:
            result = await transport.send_message(to, body, media_url=media_url)
        except DeliveryFailed as e:
            return DispatchResult(
                provider=Provider.TWILIO,
                to=to,
                message_id=None,
                outcome=DispatchOutcome.FAILED,
                error=e,
            )

        record = DeliveryRecord(
            message_id=result.message_id,
            provider=Provider.TWILIO,
            status=DeliveryStatus.from_provider(result.status),
        )
        if wait_seconds <= 0:
            return DispatchResult(
                provider=Provider.TWILIO,
                to=to,
                message_id=result.message_id,
                outcome=DispatchOutcome.ACCEPTED,
                record=record,
            )

        return await self._wait(transport, to, record, wait_seconds, poll_seconds)

    async def _wait(
        self,
        transport: TwilioPollTransport,
        to: str,
        record: DeliveryRecord,
        wait_seconds: float,
        poll_seconds: float,
    ) -> DispatchResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds

        while loop.time() < deadline:
            try:
                observed = await transport.fetch_status(record.message_id)
            except TransportConnectError as e:
                logger.warning(f"Status check for {record.message_id} failed: {e}")
            else:
                record.transition(
                    observed.status,
                    checked_at=observed.last_checked_at,
                    error_code=observed.error_code,
                    error_message=observed.error_message,
                )
                logger.debug(f"Message {record.message_id} status: {record.status.value}")

                if record.status.is_success:
                    logger.info(f"Message {record.message_id} {record.status.value}")
                    return DispatchResult(
                        provider=Provider.TWILIO,
                        to=to,
                        message_id=record.message_id,
                        outcome=DispatchOutcome.DELIVERED,
                        record=record,
                    )
                if record.status.is_failure:
                    error = DeliveryFailed(
                        f"Delivery failed ({record.status.value})"
                        f"{f' code {record.error_code}' if record.error_code else ''}"
                        f"{f': {record.error_message}' if record.error_message else ''}",
                        message_id=record.message_id,
                        status=record.status.value,
                        error_code=record.error_code,
                        error_message=record.error_message,
                    )
                    logger.error(str(error))
                    return DispatchResult(
                        provider=Provider.TWILIO,
                        to=to,
                        message_id=record.message_id,
                        outcome=DispatchOutcome.FAILED,
                        record=record,
                        error=error,
                    )

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(poll_seconds, remaining))

        record.transition(DeliveryStatus.TIMED_OUT)
        logger.info(
            f"Timed out after {wait_seconds:g}s waiting for final status of "
            f"{record.message_id}; message may still be in flight"
        )
        return DispatchResult(
            provider=Provider.TWILIO,
            to=to,
            message_id=record.message_id,
            outcome=DispatchOutcome.TIMED_OUT,
            record=record,
        )
