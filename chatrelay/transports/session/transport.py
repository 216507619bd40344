"""
Session Transport for chatrelay.

Owns the persistent duplex connection of a linked personal account:
pairing, credential persistence, close classification and inbound event
demultiplexing.

Event flow:
    socket.events() --pump--> demux (filter, dedup, text) --pending queue-->
    side-effect worker (read receipt, media download) --inbox--> messages()

The pump never awaits anything slow, so the client's own keep-alive
processing is never starved by relay work.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from chatrelay.errors import CredentialInvalidated, RelayError, TransportConnectError
from chatrelay.media import SESSION_MAX_MEDIA_BYTES, LoadedMedia, MediaGuard, MediaStore
from chatrelay.utils import is_ignored_chat, jid_to_e164

from ..protocol import InboundMessage, Provider, SendResult
from ..tracking import SeenSet
from .credentials import CredentialStore, SelfIdentity
from .events import extract_text, media_kind, media_mimetype, media_placeholder
from .socket import (
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    RawMessage,
    SessionSocket,
    SocketFactory,
)
from .state import CloseKind, CloseReason, SessionState, SessionStateMachine, classify_close

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Accepted:
    raw: RawMessage
    from_address: str
    body: str


@dataclass(frozen=True, slots=True)
class _StreamEnd:
    error: Exception | None = None


class SessionReplyChannel:
    """Reply handle bound to one chat JID of the session transport."""

    def __init__(self, transport: "SessionTransport", jid: str):
        self._transport = transport
        self._jid = jid

    @property
    def max_media_bytes(self) -> int:
        return SESSION_MAX_MEDIA_BYTES

    async def send_composing(self) -> None:
        await self._transport.send_presence("composing", self._jid)

    async def reply(self, text: str) -> SendResult:
        return await self._transport.send_message(self._jid, {"text": text})

    async def send_media(
        self,
        media: LoadedMedia,
        caption: str | None = None,
    ) -> SendResult:
        return await self._transport.send_message(self._jid, media_payload(media, caption))


def media_payload(media: LoadedMedia, caption: str | None = None) -> dict[str, Any]:
    """Build a session-protocol media payload."""
    payload: dict[str, Any] = {media.kind: media.data}
    if media.content_type:
        payload["mimetype"] = media.content_type
    if caption and media.kind != "audio":
        payload["caption"] = caption
    return payload


class SessionTransport:
    """
    Session transport adapter.

    Example:
        transport = SessionTransport(
            credentials=CredentialStore(Path("~/.chatrelay/credentials").expanduser()),
            socket_factory=my_client_factory,
        )
        await transport.connect()
        async for message in transport.messages():
            ...
        await transport.close()
    """

    # Delay before the old connection is force-closed after a restart request
    RESTART_GRACE_SECONDS = 0.5

    def __init__(
        self,
        credentials: CredentialStore,
        socket_factory: SocketFactory | None = None,
        media_guard: MediaGuard | None = None,
        media_store: MediaStore | None = None,
        on_pairing_code: Callable[[str], None] | None = None,
        seen: SeenSet | None = None,
    ):
        """
        Args:
            credentials: Credential directory (written only by this transport)
            socket_factory: Creates one session-protocol connection
            media_guard: Bounds inbound media downloads
            media_store: Where inbound media is saved (downloads skipped if None)
            on_pairing_code: Called with each pairing code during login
            seen: Dedup set (fresh one per transport if None)
        """
        self._credentials = credentials
        self._socket_factory = socket_factory
        self._media_guard = media_guard or MediaGuard()
        self._media_store = media_store
        self._on_pairing_code = on_pairing_code
        self._seen = seen or SeenSet()

        self._machine = SessionStateMachine()
        self._socket: SessionSocket | None = None
        self._self_jid: str | None = None
        self._show_pairing = False
        self._closing = False

        self._opened: asyncio.Future[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._worker_task: asyncio.Task[None] | None = None
        self._pending: asyncio.Queue[_Accepted | _StreamEnd] = asyncio.Queue()
        self._inbox: asyncio.Queue[InboundMessage | _StreamEnd] = asyncio.Queue()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def channel_id(self) -> str:
        return Provider.WEB.value

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._machine

    @property
    def close_reason(self) -> CloseReason | None:
        return self._machine.close_reason

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def seen(self) -> SeenSet:
        return self._seen

    @property
    def self_e164(self) -> str | None:
        return jid_to_e164(self._self_jid)

    def reply_channel(self, message: InboundMessage) -> SessionReplyChannel:
        return SessionReplyChannel(self, message.chat_id)

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, show_pairing_prompt: bool = False) -> "SessionTransport":
        """
        Open a connection; returns once the session is OPEN.

        Args:
            show_pairing_prompt: Surface pairing codes (login). Without it,
                a pairing request means the account is not linked and the
                attempt fails.

        Raises:
            CredentialInvalidated: Remote logout; credentials were deleted
            TransportConnectError: Closed before opening (carries CloseReason)
        """
        if self._machine.state == SessionState.OPEN:
            return self
        if self._socket_factory is None:
            raise TransportConnectError(
                "No session client configured (set CHATRELAY_SESSION_CLIENT)",
                provider=self.channel_id,
            )

        self._machine.transition(SessionState.CONNECTING)
        self._show_pairing = show_pairing_prompt
        self._closing = False
        self._pending = asyncio.Queue()
        self._inbox = asyncio.Queue()
        self._worker_task = None

        try:
            socket = await self._socket_factory(self._credentials.load())
        except Exception as e:
            reason = CloseReason(kind=CloseKind.OTHER, message=f"Session client failed to start: {e}")
            self._machine.transition(SessionState.CLOSED, reason)
            raise TransportConnectError(
                reason.message, provider=self.channel_id, reason=reason
            ) from e

        self._socket = socket
        self._opened = asyncio.get_running_loop().create_future()
        self._pump_task = asyncio.create_task(self._pump(socket))

        try:
            await self._opened
        except RelayError:
            reason = self._machine.close_reason
            grace = (
                self.RESTART_GRACE_SECONDS
                if reason is not None and reason.kind == CloseKind.RESTART_REQUIRED
                else 0.0
            )
            self._retire_socket(socket, grace)
            raise

        logger.info(f"Session connected as {self.self_e164 or 'unknown'}")
        return self

    async def login(self) -> SelfIdentity:
        """
        Pair (or confirm pairing) and return the linked identity.

        A restart request right after first-time pairing is answered with
        exactly one silent reconnect; if that also fails, the original
        error is raised.
        """
        try:
            await self.connect(show_pairing_prompt=True)
        except TransportConnectError as e:
            if e.reason is None or e.reason.kind != CloseKind.RESTART_REQUIRED:
                raise
            logger.info(
                f"Session asked for a restart after pairing (code {e.status_code}); "
                "credentials are saved. Restarting connection once..."
            )
            try:
                await self.connect(show_pairing_prompt=False)
            except RelayError as retry_error:
                logger.error(f"Reconnect after restart request failed: {retry_error}")
                raise e from retry_error

        identity = self._credentials.read_identity()
        if not identity.jid and self._self_jid:
            identity = SelfIdentity(jid=self._self_jid, e164=self.self_e164)
        return identity

    async def close(self) -> None:
        """Release the connection. Safe to call repeatedly."""
        self._closing = True

        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None

        if self._opened is not None and not self._opened.done():
            self._opened.set_exception(
                TransportConnectError("Connection closed by client", provider=self.channel_id)
            )

        if self._machine.can_transition(SessionState.CLOSED):
            self._machine.transition(
                SessionState.CLOSED,
                CloseReason(kind=CloseKind.OTHER, message="closed by client"),
            )

        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket)

        if self._worker_task is not None:
            self._pending.put_nowait(_StreamEnd())
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None
        else:
            self._inbox.put_nowait(_StreamEnd())

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def send_message(self, jid: str, payload: dict[str, Any]) -> SendResult:
        """
        Send a payload to a chat. Fire-and-forget: no delivery tracking.

        Raises:
            TransportConnectError: If the session is not open
        """
        socket = self._require_open()
        message_id = await socket.send_message(jid, payload)
        return SendResult(message_id=message_id or "unknown", provider=Provider.WEB, to=jid)

    async def send_presence(self, kind: str, jid: str | None = None) -> bool:
        """Best-effort presence update. Returns False if it failed."""
        socket = self._socket
        if socket is None or self._machine.state != SessionState.OPEN:
            return False
        try:
            await socket.send_presence(kind, jid)
            return True
        except Exception as e:
            logger.debug(f"Presence update '{kind}' skipped: {e}")
            return False

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def messages(self) -> AsyncIterator[InboundMessage]:
        """
        Normalized inbound messages of the current connection, in order.

        Ends when close() is called. Raises the close error if the remote
        side drops an open connection (TransportConnectError or
        CredentialInvalidated), so the caller can decide on failover.
        """
        inbox = self._inbox
        while True:
            item = await inbox.get()
            if isinstance(item, _StreamEnd):
                if item.error is not None:
                    raise item.error
                return
            yield item

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_open(self) -> SessionSocket:
        if self._socket is None or self._machine.state != SessionState.OPEN:
            raise TransportConnectError(
                f"Session not open (state: {self._machine.state.value})",
                provider=self.channel_id,
            )
        return self._socket

    async def _pump(self, socket: SessionSocket) -> None:
        """Consume the socket's event stream until it closes."""
        try:
            async for event in socket.events():
                if isinstance(event, ConnectionUpdate):
                    if self._on_connection_update(socket, event):
                        return
                elif isinstance(event, CredentialsUpdate):
                    self._save_credentials(socket, event)
                elif isinstance(event, MessagesUpsert):
                    for item in self._demux(event):
                        self._pending.put_nowait(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Session event stream failed: {e}", exc_info=True)
            self._on_closed(classify_close(None, f"Session event stream failed: {e}"))
            return

        if not self._closing:
            self._on_closed(classify_close(None, "Connection closed"))

    def _on_connection_update(self, socket: SessionSocket, update: ConnectionUpdate) -> bool:
        """Apply a connection update. Returns True when the connection is closed."""
        state = self._machine.state

        if update.qr:
            if not self._show_pairing:
                self._on_closed(
                    CloseReason(
                        kind=CloseKind.OTHER,
                        message="Session is not linked; run login and pair first",
                    )
                )
                return True
            if state == SessionState.CONNECTING:
                self._machine.transition(SessionState.AWAITING_PAIRING)
            if self._on_pairing_code is not None:
                self._on_pairing_code(update.qr)
            else:
                logger.info(f"Pairing code: {update.qr}")

        if update.connection == "open" and self._machine.can_transition(SessionState.OPEN):
            self._machine.transition(SessionState.OPEN)
            self._self_jid = socket.self_jid or self._credentials.read_identity().jid
            self._worker_task = asyncio.create_task(self._deliver_loop(socket))
            if self._opened is not None and not self._opened.done():
                self._opened.set_result(None)

        elif update.connection == "close":
            self._on_closed(classify_close(update.status_code, update.error or ""))
            return True

        return False

    def _on_closed(self, reason: CloseReason) -> None:
        if not self._machine.can_transition(SessionState.CLOSED):
            return
        was_open = self._machine.state == SessionState.OPEN
        self._machine.transition(SessionState.CLOSED, reason)
        logger.info(f"Session closed ({reason.kind.value}): {reason.format()}")

        if reason.kind == CloseKind.LOGGED_OUT:
            self._credentials.clear()

        error = self._error_for(reason, was_open)
        if self._opened is not None and not self._opened.done():
            self._opened.set_exception(error)
        if self._worker_task is not None:
            self._pending.put_nowait(_StreamEnd(None if self._closing else error))
        else:
            self._inbox.put_nowait(_StreamEnd(None if self._closing else error))

    def _error_for(self, reason: CloseReason, was_open: bool) -> RelayError:
        if reason.kind == CloseKind.LOGGED_OUT:
            return CredentialInvalidated(
                "Session logged out; cleared cached credentials. Run login and pair again."
            )
        prefix = "Session connection closed." if was_open else (
            "Session connection ended before fully opening."
        )
        return TransportConnectError(
            f"{prefix} {reason.format()}",
            provider=self.channel_id,
            reason=reason,
            status_code=reason.status_code,
        )

    def _save_credentials(self, socket: SessionSocket, update: CredentialsUpdate) -> None:
        try:
            self._credentials.save(update.creds, update.self_jid or socket.self_jid)
        except OSError as e:
            logger.error(f"Failed to persist session credentials: {e}")

    def _demux(self, upsert: MessagesUpsert) -> list[_Accepted]:
        """Filter, dedup and extract text. Synchronous: runs inside the pump."""
        if upsert.kind != "notify":
            return []

        accepted: list[_Accepted] = []
        for raw in upsert.messages:
            if raw.from_me:
                continue
            jid = raw.remote_jid
            if not jid or is_ignored_chat(jid):
                continue
            if raw.id and raw.id in self._seen:
                logger.debug(f"Skipping duplicate session message {raw.id}")
                continue
            from_address = jid_to_e164(jid)
            if not from_address:
                continue
            body = extract_text(raw.content) or media_placeholder(raw.content)
            if not body:
                continue
            if raw.id:
                self._seen.add(raw.id)
            accepted.append(_Accepted(raw=raw, from_address=from_address, body=body))
        return accepted

    async def _deliver_loop(self, socket: SessionSocket) -> None:
        """Run best-effort side effects per accepted message, then hand it on."""
        while True:
            item = await self._pending.get()
            if isinstance(item, _StreamEnd):
                self._inbox.put_nowait(item)
                return
            try:
                message = await self._deliver(socket, item)
            except Exception as e:
                logger.error(f"Failed normalizing session message: {e}", exc_info=True)
                continue
            self._inbox.put_nowait(message)

    async def _deliver(self, socket: SessionSocket, item: _Accepted) -> InboundMessage:
        raw = item.raw
        if raw.id:
            await self._mark_read(socket, raw)
        media_path, media_type = await self._download_media(socket, raw)

        timestamp = (
            datetime.fromtimestamp(raw.timestamp, tz=timezone.utc)
            if raw.timestamp
            else datetime.now(timezone.utc)
        )
        message = InboundMessage(
            id=raw.id or f"local-{uuid.uuid4().hex}",
            from_address=item.from_address,
            to_address=self.self_e164 or "me",
            body=item.body,
            provider=Provider.WEB,
            timestamp=timestamp,
            chat_id=raw.remote_jid or "",
            push_name=raw.push_name,
            media_path=media_path,
            media_type=media_type,
        )
        logger.info(
            f"Inbound message {message.id}: {message.from_address} -> {message.to_address}"
            f"{f' (media {media_type})' if media_path else ''}"
        )
        return message

    async def _mark_read(self, socket: SessionSocket, raw: RawMessage) -> None:
        try:
            await socket.read_messages(
                [
                    {
                        "remoteJid": raw.remote_jid,
                        "id": raw.id,
                        "participant": raw.participant,
                        "fromMe": False,
                    }
                ]
            )
            logger.debug(f"Marked message {raw.id} as read for {raw.remote_jid}")
        except Exception as e:
            logger.debug(f"Failed to mark message {raw.id} read: {e}")

    async def _download_media(
        self,
        socket: SessionSocket,
        raw: RawMessage,
    ) -> tuple[str | None, str | None]:
        if self._media_store is None or media_kind(raw.content) is None:
            return None, None
        mimetype = media_mimetype(raw.content)
        try:
            data = await socket.download_media(raw)
            media = self._media_guard.accept(data, mimetype, SESSION_MAX_MEDIA_BYTES)
            path = await self._media_store.save(media.data, media.content_type)
        except Exception as e:
            logger.debug(f"Inbound media download failed for {raw.id}: {e}")
            return None, None
        return str(path), mimetype

    def _retire_socket(self, socket: SessionSocket, delay: float) -> None:
        if self._socket is socket:
            self._socket = None
        task = asyncio.create_task(self._close_socket(socket, delay))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _close_socket(self, socket: SessionSocket, delay: float = 0.0) -> None:
        if delay:
            await asyncio.sleep(delay)
        try:
            await socket.close()
        except Exception as e:
            logger.debug(f"Socket close failed: {e}")
