"""
Tests for the inbound reply pipeline.

- InboundPipeline (dedup, resolver, media fallback)
- Reply resolvers
- SerialTaskQueue
"""

import asyncio

import httpx
import pytest

from chatrelay.media import MediaGuard
from chatrelay.relay import (
    CallableReplyResolver,
    InboundPipeline,
    ReplyContext,
    ReplyHooks,
    ReplyOutcome,
    ReplyResult,
    SerialTaskQueue,
    StaticReplyResolver,
)
from chatrelay.transports import InboundMessage, Provider, SendResult


class FakeChannel:
    """Records what the pipeline sends."""

    max_media_bytes = 1024

    def __init__(self):
        self.texts = []
        self.media = []
        self.composing = 0
        self.fail_reply = False
        self.fail_media = False

    async def send_composing(self):
        self.composing += 1

    async def reply(self, text):
        if self.fail_reply:
            raise RuntimeError("send failed")
        self.texts.append(text)
        return SendResult(message_id=f"R{len(self.texts)}", provider=Provider.TWILIO)

    async def send_media(self, media, caption=None):
        if self.fail_media:
            raise RuntimeError("upload rejected")
        self.media.append((media, caption))
        return SendResult(message_id="M1", provider=Provider.TWILIO)


class FakeTransport:
    channel_id = "twilio"

    def __init__(self):
        self.channel = FakeChannel()
        self.reply_targets = []

    def reply_channel(self, message):
        self.reply_targets.append(message.chat_id)
        return self.channel


def _message(msg_id="SM1", provider=Provider.TWILIO, body="hello", **kwargs):
    return InboundMessage(
        id=msg_id,
        from_address="+15551234567",
        to_address="+14155238886",
        body=body,
        provider=provider,
        chat_id="whatsapp:+15551234567",
        **kwargs,
    )


def _media_guard(size: int) -> MediaGuard:
    def handler(request):
        return httpx.Response(200, content=b"x" * size, headers={"content-type": "image/png"})

    return MediaGuard(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _returning(value):
    async def fn(payload, hooks):
        return value

    return CallableReplyResolver(fn)


# =============================================================================
# Pipeline Tests
# =============================================================================


class TestInboundPipeline:
    """Tests for InboundPipeline.handle()."""

    @pytest.mark.asyncio
    async def test_text_reply(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=StaticReplyResolver("Thanks!"))

        outcome = await pipeline.handle(_message(), transport)

        assert outcome == ReplyOutcome.TEXT
        assert outcome.replied is True
        assert transport.channel.texts == ["Thanks!"]
        assert transport.reply_targets == ["whatsapp:+15551234567"]

    @pytest.mark.asyncio
    async def test_reply_start_hook_sends_composing(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=StaticReplyResolver("Thanks!"))

        await pipeline.handle(_message(), transport)

        assert transport.channel.composing == 1

    @pytest.mark.asyncio
    async def test_duplicate_handled_once(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=StaticReplyResolver("Thanks!"))

        first = await pipeline.handle(_message("wamid.A"), transport)
        second = await pipeline.handle(_message("wamid.A", body="redelivered"), transport)

        assert first == ReplyOutcome.TEXT
        assert second == ReplyOutcome.DUPLICATE
        assert transport.channel.texts == ["Thanks!"]

    @pytest.mark.asyncio
    async def test_same_id_on_other_provider_is_distinct(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=StaticReplyResolver("ok"))

        await pipeline.handle(_message("X1", provider=Provider.TWILIO), transport)
        outcome = await pipeline.handle(_message("X1", provider=Provider.WEB), transport)

        assert outcome == ReplyOutcome.TEXT
        assert len(transport.channel.texts) == 2

    @pytest.mark.asyncio
    async def test_no_resolver(self):
        transport = FakeTransport()
        pipeline = InboundPipeline()

        assert await pipeline.handle(_message(), transport) == ReplyOutcome.NO_REPLY
        assert transport.channel.texts == []
        assert ("twilio", "SM1") in pipeline.seen

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "", "   ", {"text": None}, ReplyResult()])
    async def test_empty_results_send_nothing(self, value):
        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=_returning(value))

        assert await pipeline.handle(_message(), transport) == ReplyOutcome.NO_REPLY
        assert transport.channel.texts == []

    @pytest.mark.asyncio
    async def test_resolver_failure(self):
        async def broken(payload, hooks):
            raise RuntimeError("resolver crashed")

        transport = FakeTransport()
        pipeline = InboundPipeline(resolver=CallableReplyResolver(broken))

        assert await pipeline.handle(_message(), transport) == ReplyOutcome.FAILED
        assert transport.channel.texts == []

    @pytest.mark.asyncio
    async def test_send_failure(self):
        transport = FakeTransport()
        transport.channel.fail_reply = True
        pipeline = InboundPipeline(resolver=StaticReplyResolver("Thanks!"))

        assert await pipeline.handle(_message(), transport) == ReplyOutcome.FAILED

    @pytest.mark.asyncio
    async def test_media_reply_with_caption(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(
            resolver=_returning({"text": "here", "media_url": "https://x/cat.png"}),
            media_guard=_media_guard(100),
        )

        outcome = await pipeline.handle(_message(), transport)

        assert outcome == ReplyOutcome.MEDIA
        ((media, caption),) = transport.channel.media
        assert media.size == 100
        assert caption == "here"
        assert transport.channel.texts == []

    @pytest.mark.asyncio
    async def test_oversized_media_falls_back_to_text(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(
            resolver=_returning(ReplyResult(text="see attached", media_url="https://x/big.png")),
            media_guard=_media_guard(2048),
        )

        outcome = await pipeline.handle(_message(), transport)

        assert outcome == ReplyOutcome.TEXT_FALLBACK
        assert transport.channel.texts == ["see attached"]
        assert transport.channel.media == []

    @pytest.mark.asyncio
    async def test_oversized_media_without_text_is_dropped(self):
        transport = FakeTransport()
        pipeline = InboundPipeline(
            resolver=_returning(ReplyResult(media_url="https://x/big.png")),
            media_guard=_media_guard(2048),
        )

        outcome = await pipeline.handle(_message(), transport)

        assert outcome == ReplyOutcome.DROPPED
        assert outcome.replied is False
        assert transport.channel.texts == []
        assert transport.channel.media == []

    @pytest.mark.asyncio
    async def test_media_send_failure_falls_back_to_text(self):
        transport = FakeTransport()
        transport.channel.fail_media = True
        pipeline = InboundPipeline(
            resolver=_returning({"text": "caption", "media_url": "https://x/y.png"}),
            media_guard=_media_guard(100),
        )

        outcome = await pipeline.handle(_message(), transport)

        assert outcome == ReplyOutcome.TEXT_FALLBACK
        assert transport.channel.texts == ["caption"]

    @pytest.mark.asyncio
    async def test_media_send_failure_without_text_is_dropped(self):
        transport = FakeTransport()
        transport.channel.fail_media = True
        pipeline = InboundPipeline(
            resolver=_returning(ReplyResult(media_url="https://x/y.png")),
            media_guard=_media_guard(100),
        )

        assert await pipeline.handle(_message(), transport) == ReplyOutcome.DROPPED
        assert transport.channel.texts == []


# =============================================================================
# Resolver Tests
# =============================================================================


class TestResolvers:
    """Tests for the bundled reply resolvers."""

    def test_context_mapping(self):
        context = ReplyContext.from_message(
            _message(media_url="https://x/in.jpg", media_type="image/jpeg")
        )

        assert context.to_dict() == {
            "Body": "hello",
            "From": "+15551234567",
            "To": "+14155238886",
            "MessageSid": "SM1",
            "MediaUrl": "https://x/in.jpg",
            "MediaType": "image/jpeg",
        }

    @pytest.mark.asyncio
    async def test_callable_receives_mapping_and_hooks(self):
        calls = []

        async def fn(payload, hooks):
            calls.append(payload)
            await hooks.on_reply_start()
            return "pong"

        started = []

        async def on_start():
            started.append(True)

        result = await CallableReplyResolver(fn).resolve(
            ReplyContext.from_message(_message(body="ping")),
            ReplyHooks(on_reply_start=on_start),
        )

        assert result == ReplyResult(text="pong")
        assert calls[0]["Body"] == "ping"
        assert started == [True]

    @pytest.mark.asyncio
    async def test_callable_accepts_camel_case_media(self):
        result = await _returning({"mediaUrl": "https://x/a.png"}).resolve(
            ReplyContext.from_message(_message()), ReplyHooks()
        )
        assert result.media_url == "https://x/a.png"

    @pytest.mark.asyncio
    async def test_callable_rejects_unknown_result(self):
        with pytest.raises(TypeError):
            await _returning(42).resolve(ReplyContext.from_message(_message()), ReplyHooks())

    @pytest.mark.asyncio
    async def test_static_without_text(self):
        result = await StaticReplyResolver("").resolve(
            ReplyContext.from_message(_message()), ReplyHooks()
        )
        assert result is None


# =============================================================================
# Task Queue Tests
# =============================================================================


class TestSerialTaskQueue:
    """Tests for SerialTaskQueue."""

    @pytest.mark.asyncio
    async def test_runs_one_at_a_time_in_order(self):
        queue = SerialTaskQueue()
        running = 0
        peak = 0
        order = []

        def make(name):
            async def task():
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                order.append(name)
                running -= 1
                return name

            return task

        results = await asyncio.gather(*(queue.enqueue(make(i)) for i in range(4)))

        assert results == [0, 1, 2, 3]
        assert order == [0, 1, 2, 3]
        assert peak == 1
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_failure_releases_queue(self):
        queue = SerialTaskQueue()

        async def broken():
            raise RuntimeError("boom")

        async def fine():
            return "ok"

        with pytest.raises(RuntimeError):
            await queue.enqueue(broken)
        assert await queue.enqueue(fine) == "ok"
