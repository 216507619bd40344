"""
Inbound Pipeline for chatrelay.

Consumes normalized messages from either transport and turns them into
at most one reply:

    dedup -> resolver (through the task queue) -> media fetch -> reply

Nothing in here raises to the caller. A relay loop can hand every
message to handle() and move on; the returned ReplyOutcome says what
happened.
"""
from __future__ import annotations

import functools
import logging
import time
from enum import Enum

from chatrelay.media import MediaGuard
from chatrelay.transports import InboundMessage, ReplyChannel, SeenSet, TransportAdapter

from .resolver import (
    ReplyContext,
    ReplyHooks,
    ReplyResolver,
    ReplyResult,
    SerialTaskQueue,
    TaskQueue,
)

logger = logging.getLogger(__name__)


class ReplyOutcome(str, Enum):
    DUPLICATE = "duplicate"
    NO_REPLY = "no_reply"
    TEXT = "text"
    MEDIA = "media"
    TEXT_FALLBACK = "text_fallback"
    DROPPED = "dropped"
    FAILED = "failed"

    @property
    def replied(self) -> bool:
        return self in (ReplyOutcome.TEXT, ReplyOutcome.MEDIA, ReplyOutcome.TEXT_FALLBACK)


class InboundPipeline:
    """
    Reply pipeline shared by the relay loop and the webhook.

    Keeps its own dedup set keyed by (provider, id): transports dedup
    their own streams, but webhook redeliveries never pass through one.

    Example:
        pipeline = InboundPipeline(resolver=StaticReplyResolver("Thanks!"))
        outcome = await pipeline.handle(message, transport)
    """

    def __init__(
        self,
        resolver: ReplyResolver | None = None,
        media_guard: MediaGuard | None = None,
        task_queue: TaskQueue | None = None,
        seen: SeenSet | None = None,
    ):
        """
        Args:
            resolver: Decides the reply (no replies are sent if None)
            media_guard: Loads media replies within the transport's cap
            task_queue: Serializes resolver executions process-wide
            seen: Dedup set of (provider, id) keys
        """
        self._resolver = resolver
        self._media_guard = media_guard or MediaGuard()
        self._task_queue = task_queue or SerialTaskQueue()
        self._seen = seen or SeenSet()

    @property
    def seen(self) -> SeenSet:
        return self._seen

    async def handle(self, message: InboundMessage, transport: TransportAdapter) -> ReplyOutcome:
        if not self._seen.add(message.dedup_key):
            logger.debug(f"Duplicate {message.provider.value} message {message.id}; skipping")
            return ReplyOutcome.DUPLICATE

        if self._resolver is None:
            return ReplyOutcome.NO_REPLY

        channel = transport.reply_channel(message)
        context = ReplyContext.from_message(message)
        hooks = ReplyHooks(on_reply_start=functools.partial(self._send_composing, channel))
        started = time.perf_counter()

        try:
            result = await self._task_queue.enqueue(
                functools.partial(self._resolver.resolve, context, hooks)
            )
        except Exception as e:
            logger.error(f"Reply resolver failed for {message.id}: {e}", exc_info=True)
            return ReplyOutcome.FAILED

        if result is None or result.is_empty:
            logger.debug(f"No reply for {message.id}")
            return ReplyOutcome.NO_REPLY

        try:
            outcome = await self._reply(channel, message, result)
        except Exception as e:
            logger.error(f"Failed sending reply to {message.from_address}: {e}", exc_info=True)
            return ReplyOutcome.FAILED

        if outcome.replied:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                f"Auto-replied to {message.from_address} ({outcome.value}) in {duration_ms:.1f}ms"
            )
        return outcome

    async def _reply(
        self,
        channel: ReplyChannel,
        message: InboundMessage,
        result: ReplyResult,
    ) -> ReplyOutcome:
        text = result.text.strip() if result.text and result.text.strip() else None

        if result.media_url:
            try:
                media = await self._media_guard.fetch(result.media_url, channel.max_media_bytes)
                await channel.send_media(media, caption=text)
                return ReplyOutcome.MEDIA
            except Exception as e:
                if text is None:
                    logger.error(f"Media reply to {message.from_address} dropped: {e}")
                    return ReplyOutcome.DROPPED
                logger.warning(
                    f"Media reply to {message.from_address} failed ({e}); sending text only"
                )
                await channel.reply(text)
                return ReplyOutcome.TEXT_FALLBACK

        await channel.reply(text or "")
        return ReplyOutcome.TEXT

    async def _send_composing(self, channel: ReplyChannel) -> None:
        try:
            await channel.send_composing()
        except Exception as e:
            logger.debug(f"Composing indicator failed: {e}")
