"""
Reply resolver and task queue interfaces.

The relay core never decides what to answer. A ReplyResolver is handed
the canonical context of one inbound message and returns text and/or a
media reference (or nothing). Heavy work it triggers runs through a
TaskQueue so that only one such execution is in flight per process,
whichever transport produced the message.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from chatrelay.transports import InboundMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ReplyContext:
    """Canonical context passed to the reply resolver."""

    body: str
    from_address: str
    to_address: str
    message_sid: str
    media_path: str | None = None
    media_url: str | None = None
    media_type: str | None = None

    @classmethod
    def from_message(cls, message: InboundMessage) -> "ReplyContext":
        return cls(
            body=message.body,
            from_address=message.from_address,
            to_address=message.to_address,
            message_sid=message.id,
            media_path=message.media_path,
            media_url=message.media_url,
            media_type=message.media_type,
        )

    def to_dict(self) -> dict[str, Any]:
        """Resolver-facing mapping, keyed the way webhook payloads are."""
        data: dict[str, Any] = {
            "Body": self.body,
            "From": self.from_address,
            "To": self.to_address,
            "MessageSid": self.message_sid,
        }
        if self.media_path:
            data["MediaPath"] = self.media_path
        if self.media_url:
            data["MediaUrl"] = self.media_url
        if self.media_type:
            data["MediaType"] = self.media_type
        return data


@dataclass(frozen=True, slots=True)
class ReplyHooks:
    on_reply_start: Callable[[], Awaitable[None]] | None = None


@dataclass(frozen=True, slots=True)
class ReplyResult:
    """What to answer. Both fields empty means "no reply"."""

    text: str | None = None
    media_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and not self.media_url


@runtime_checkable
class ReplyResolver(Protocol):
    async def resolve(
        self,
        context: ReplyContext,
        hooks: ReplyHooks,
    ) -> ReplyResult | None:
        ...


class StaticReplyResolver:
    """Always answers with the same text."""

    def __init__(self, text: str):
        self._text = text

    async def resolve(self, context: ReplyContext, hooks: ReplyHooks) -> ReplyResult | None:
        if not self._text:
            return None
        if hooks.on_reply_start is not None:
            await hooks.on_reply_start()
        return ReplyResult(text=self._text)


class CallableReplyResolver:
    """
    Adapts a plain coroutine function to ReplyResolver.

    The function receives the resolver-facing mapping and the hooks, and
    may return a ReplyResult, a {"text", "media_url"} dict, a string or None.
    """

    def __init__(self, fn: Callable[[dict[str, Any], ReplyHooks], Awaitable[Any]]):
        self._fn = fn

    async def resolve(self, context: ReplyContext, hooks: ReplyHooks) -> ReplyResult | None:
        value = await self._fn(context.to_dict(), hooks)
        if value is None or isinstance(value, ReplyResult):
            return value
        if isinstance(value, str):
            return ReplyResult(text=value)
        if isinstance(value, dict):
            return ReplyResult(
                text=value.get("text"),
                media_url=value.get("media_url") or value.get("mediaUrl"),
            )
        raise TypeError(f"Unsupported reply resolver result: {type(value).__name__}")


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run `task` when its turn comes and return its result."""
        ...


class SerialTaskQueue:
    """
    In-process queue running one task at a time, in arrival order.

    asyncio.Lock wakes waiters first-in first-out.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Tasks waiting or running."""
        return self._pending

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        self._pending += 1
        try:
            async with self._lock:
                return await task()
        finally:
            self._pending -= 1
