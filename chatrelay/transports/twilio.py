"""
Twilio Poll Transport for chatrelay.

WhatsApp messaging through Twilio's REST API:
- Ingress: a cooperative polling loop with a time watermark, or webhook
  form payloads (normalize_request)
- Egress: message creation plus delivery-status fetches

The Twilio client is synchronous; every call runs in the default executor
so the event loop is never blocked.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from chatrelay.config import AppSettings, TwilioCredentials, get_settings, require_twilio
from chatrelay.errors import DeliveryFailed, MediaFetchError, TransportConnectError
from chatrelay.media import POLL_MAX_MEDIA_BYTES, LoadedMedia
from chatrelay.utils import normalize_e164, with_whatsapp_prefix

from .delivery import DeliveryRecord, DeliveryStatus
from .protocol import InboundMessage, Provider, SendResult
from .tracking import SeenSet, Watermark

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnMessage = Callable[[InboundMessage], Awaitable[Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _more_info(error: TwilioRestException) -> str | None:
    more = getattr(error, "more_info", None)
    if more:
        return str(more)
    if error.code:
        return f"https://www.twilio.com/docs/errors/{error.code}"
    return None


@dataclass(frozen=True, slots=True)
class MessageSummary:
    """One row of the recent-messages listing (either direction)."""

    sid: str
    direction: str
    from_address: str
    to_address: str
    body: str
    status: str | None
    created_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sid": self.sid,
            "direction": self.direction,
            "from": self.from_address,
            "to": self.to_address,
            "body": self.body,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TwilioReplyChannel:
    """Reply handle bound to one WhatsApp sender on the poll transport."""

    def __init__(self, transport: "TwilioPollTransport", to: str):
        self._transport = transport
        self._to = to

    @property
    def max_media_bytes(self) -> int:
        return POLL_MAX_MEDIA_BYTES

    async def send_composing(self) -> None:
        # No typing indicator on this transport
        return None

    async def reply(self, text: str) -> SendResult:
        return await self._transport.send_message(self._to, text)

    async def send_media(
        self,
        media: LoadedMedia,
        caption: str | None = None,
    ) -> SendResult:
        if not media.is_remote:
            raise MediaFetchError(
                "Twilio can only attach publicly reachable http(s) media, "
                f"got local file {media.source}"
            )
        return await self._transport.send_message(self._to, caption or "", media_url=media.source)


class TwilioPollTransport:
    """
    Twilio transport adapter for WhatsApp messaging.

    Example:
        transport = TwilioPollTransport(credentials, interval=5.0, lookback_minutes=5)

        # Outbound
        result = await transport.send_message("+15551234567", "Hello!")
        record = await transport.fetch_status(result.message_id)

        # Inbound
        await transport.monitor(on_message=pipeline_callback)
    """

    DEFAULT_PAGE_SIZE = 50

    def __init__(
        self,
        credentials: TwilioCredentials,
        client: Client | None = None,
        interval: float = 5.0,
        lookback_minutes: float = 5.0,
        page_size: int = DEFAULT_PAGE_SIZE,
        seen: SeenSet | None = None,
    ):
        """
        Initialize Twilio transport.

        Args:
            credentials: Validated account credentials and sender number
            client: Pre-built Twilio client (created lazily if None)
            interval: Seconds between poll iterations
            lookback_minutes: Initial watermark = now - lookback
            page_size: Max entries fetched per iteration
            seen: Dedup set (fresh one per transport if None)
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._credentials = credentials
        self._client = client
        self._interval = interval
        self._page_size = page_size
        self._seen = seen or SeenSet()
        self._watermark = Watermark(_utc_now() - timedelta(minutes=lookback_minutes))
        self._stop_event = asyncio.Event()

    @property
    def channel_id(self) -> str:
        """Unique identifier for the Twilio channel."""
        return Provider.TWILIO.value

    @property
    def from_number(self) -> str:
        """Own sender in whatsapp:+E164 form."""
        return with_whatsapp_prefix(self._credentials.whatsapp_from)

    @property
    def watermark(self) -> Watermark:
        return self._watermark

    @property
    def seen(self) -> SeenSet:
        return self._seen

    @property
    def interval(self) -> float:
        return self._interval

    def reply_channel(self, message: InboundMessage) -> TwilioReplyChannel:
        return TwilioReplyChannel(self, message.chat_id or message.from_address)

    # -------------------------------------------------------------------------
    # Client plumbing
    # -------------------------------------------------------------------------

    def _get_client(self) -> Client:
        """Get or create the Twilio client (auth token or API key pair)."""
        if self._client is None:
            creds = self._credentials
            if creds.uses_api_key:
                self._client = Client(
                    creds.api_key,
                    creds.api_secret.get_secret_value(),
                    creds.account_sid,
                )
            else:
                self._client = Client(
                    creds.account_sid,
                    creds.auth_token.get_secret_value() if creds.auth_token else None,
                )
        return self._client

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        # Twilio client is sync, run in executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        recipient: str,
        message: str,
        media_url: str | None = None,
    ) -> SendResult:
        """
        Send a WhatsApp message via Twilio.

        Args:
            recipient: Phone number (with or without whatsapp: prefix)
            message: Message body
            media_url: Public http(s) URL of an attachment

        Returns:
            SendResult with the message SID

        Raises:
            DeliveryFailed: Twilio rejected the request; carries its
                error code, message, more-info link and HTTP status
        """
        to_number = with_whatsapp_prefix(recipient)
        params: dict[str, Any] = {"from_": self.from_number, "to": to_number, "body": message}
        if media_url:
            params["media_url"] = [media_url]

        client = self._get_client()
        try:
            result = await self._run(client.messages.create, **params)
        except TwilioRestException as e:
            logger.error(f"Twilio send failed (code {e.code}, status {e.status}): {e.msg}")
            raise DeliveryFailed(
                f"Twilio send failed"
                f"{f' (code {e.code})' if e.code else ''}"
                f"{f' status {e.status}' if e.status else ''}: {e.msg}",
                status=DeliveryStatus.FAILED.value,
                error_code=e.code,
                error_message=e.msg,
                more_info=_more_info(e),
                http_status=e.status,
            ) from e

        logger.info(f"Twilio message sent: sid={result.sid} -> {to_number}")
        return SendResult(
            message_id=result.sid,
            provider=Provider.TWILIO,
            to=to_number,
            status=getattr(result, "status", None),
        )

    async def fetch_status(self, message_id: str) -> DeliveryRecord:
        """
        Fetch the current delivery status of a message.

        Raises:
            TransportConnectError: If the status lookup itself failed
        """
        client = self._get_client()
        try:
            instance = await self._run(client.messages(message_id).fetch)
        except TwilioRestException as e:
            raise TransportConnectError(
                f"Status lookup for {message_id} failed: {e.msg}",
                provider=self.channel_id,
                status_code=e.status,
            ) from e

        status = DeliveryStatus.from_provider(getattr(instance, "status", None))
        return DeliveryRecord(
            message_id=message_id,
            provider=Provider.TWILIO,
            status=status,
            last_checked_at=_utc_now(),
            error_code=getattr(instance, "error_code", None),
            error_message=getattr(instance, "error_message", None),
        )

    # -------------------------------------------------------------------------
    # Inbound (polling)
    # -------------------------------------------------------------------------

    async def fetch_inbound(self, since: datetime) -> list[InboundMessage]:
        """Inbound entries addressed to us created after `since`, oldest first."""
        client = self._get_client()
        entries = await self._run(
            client.messages.list,
            to=self.from_number,
            date_sent_after=since,
            limit=self._page_size,
        )
        inbound = [self._to_inbound(m) for m in entries if getattr(m, "direction", None) == "inbound"]
        inbound.sort(key=lambda m: m.timestamp)
        return inbound

    async def poll_once(self, on_message: OnMessage) -> list[InboundMessage]:
        """
        One poll iteration: fetch, dedup, emit, advance the watermark.

        Handler failures are logged; they do not stop the iteration.

        Returns:
            Messages accepted (emitted) in this iteration
        """
        accepted: list[InboundMessage] = []
        for message in await self.fetch_inbound(self._watermark.value):
            if not self._seen.add(message.id):
                logger.debug(f"Skipping already seen message {message.id}")
                continue
            accepted.append(message)
            logger.info(
                f"[{message.timestamp.isoformat()}] {message.from_address} -> "
                f"{message.to_address}: {message.body[:80]}"
            )
            try:
                await on_message(message)
            except Exception as e:
                logger.error(f"Failed handling inbound message {message.id}: {e}", exc_info=True)
            if self._watermark.advance(message.timestamp):
                logger.debug(f"Watermark advanced to {self._watermark.value.isoformat()}")
        return accepted

    async def monitor(
        self,
        on_message: OnMessage,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """
        Poll until stopped.

        Fetch errors are logged and the loop continues at the same fixed
        interval. Stopping is observed between iterations, never mid-fetch.
        """
        if stop_event is not None:
            self._stop_event = stop_event
        logger.info(
            f"Monitoring inbound messages to {self.from_number} "
            f"(poll {self._interval}s, since {self._watermark.value.isoformat()})"
        )

        while not self._stop_event.is_set():
            try:
                await self.poll_once(on_message)
            except Exception as e:
                logger.error(f"Error while polling messages: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Stopped monitoring")

    def stop(self) -> None:
        """Ask the monitor loop to exit at its next iteration boundary."""
        self._stop_event.set()

    async def list_recent(self, limit: int = 20, lookback_minutes: float = 60) -> list[MessageSummary]:
        """Most recent messages in both directions, oldest first."""
        client = self._get_client()
        since = _utc_now() - timedelta(minutes=lookback_minutes)
        try:
            inbound, outbound = await asyncio.gather(
                self._run(client.messages.list, to=self.from_number, date_sent_after=since, limit=limit),
                self._run(client.messages.list, from_=self.from_number, date_sent_after=since, limit=limit),
            )
        except TwilioRestException as e:
            raise TransportConnectError(
                f"Listing messages failed: {e.msg}",
                provider=self.channel_id,
                status_code=e.status,
            ) from e

        by_sid = {m.sid: m for m in [*inbound, *outbound]}
        rows = [
            MessageSummary(
                sid=m.sid,
                direction=str(getattr(m, "direction", "") or ""),
                from_address=str(getattr(m, "from_", "") or ""),
                to_address=str(getattr(m, "to", "") or ""),
                body=str(getattr(m, "body", "") or ""),
                status=getattr(m, "status", None),
                created_at=getattr(m, "date_created", None),
            )
            for m in by_sid.values()
        ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        rows.sort(key=lambda r: r.created_at or epoch)
        return rows[-limit:]

    # -------------------------------------------------------------------------
    # Inbound (webhook)
    # -------------------------------------------------------------------------

    async def normalize_request(
        self,
        request: "Request | None",
        form_data: dict[str, Any] | None = None,
    ) -> InboundMessage:
        """
        Convert a Twilio webhook form payload to an InboundMessage.

        Twilio sends form-encoded data with:
        - From / To: "whatsapp:+<number>"
        - Body: Text content
        - MessageSid: Message identifier
        - MediaUrl0 / MediaContentType0: First attachment, if any
        - ProfileName: WhatsApp profile name

        Raises:
            ValueError: If From is missing (a missing MessageSid gets a local id)
        """
        if form_data is None:
            if request is None:
                raise ValueError("Either request or form_data is required")
            form_data = dict(await request.form())

        sender_raw = str(form_data.get("From") or "").strip()
        message_sid = str(form_data.get("MessageSid") or form_data.get("SmsSid") or "").strip()
        if not sender_raw:
            raise ValueError("Missing From in Twilio webhook")
        if not message_sid:
            message_sid = f"local-{uuid.uuid4().hex}"
            logger.warning(f"Twilio webhook from {sender_raw} has no MessageSid; using {message_sid}")

        media_url = str(form_data.get("MediaUrl0") or "").strip() or None
        media_type = str(form_data.get("MediaContentType0") or "").strip() or None
        to_raw = str(form_data.get("To") or "").strip()

        return InboundMessage(
            id=message_sid,
            from_address=normalize_e164(sender_raw),
            to_address=normalize_e164(to_raw) if to_raw else normalize_e164(self.from_number),
            body=str(form_data.get("Body") or ""),
            provider=Provider.TWILIO,
            chat_id=sender_raw,
            push_name=str(form_data.get("ProfileName") or "").strip() or None,
            media_url=media_url,
            media_type=media_type if media_url else None,
        )

    def _to_inbound(self, entry: Any) -> InboundMessage:
        sender = str(getattr(entry, "from_", "") or "")
        return InboundMessage(
            id=entry.sid,
            from_address=normalize_e164(sender),
            to_address=normalize_e164(str(getattr(entry, "to", "") or self.from_number)),
            body=str(getattr(entry, "body", "") or ""),
            provider=Provider.TWILIO,
            timestamp=getattr(entry, "date_created", None) or _utc_now(),
            chat_id=sender,
        )


def create_twilio_transport(
    settings: AppSettings | None = None,
    client: Client | None = None,
) -> TwilioPollTransport:
    """
    Build a TwilioPollTransport from settings.

    Raises:
        ConfigError: If the Twilio variables are incomplete
    """
    settings = settings or get_settings()
    return TwilioPollTransport(
        require_twilio(settings),
        client=client,
        interval=settings.poll_interval,
        lookback_minutes=settings.lookback_minutes,
    )
