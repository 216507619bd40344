"""
chatrelay relay core.

Provider selection, the inbound reply pipeline, one-shot outbound
dispatch and the long-running relay service.
"""

from .inbound import InboundPipeline, ReplyOutcome
from .outbound import DispatchOutcome, DispatchResult, OutboundDispatcher
from .resolver import (
    CallableReplyResolver,
    ReplyContext,
    ReplyHooks,
    ReplyResolver,
    ReplyResult,
    SerialTaskQueue,
    StaticReplyResolver,
    TaskQueue,
)
from .selector import AUTO, ProviderSelector, parse_preference
from .service import RelayService

__all__ = [
    "AUTO",
    "CallableReplyResolver",
    "DispatchOutcome",
    "DispatchResult",
    "InboundPipeline",
    "OutboundDispatcher",
    "ProviderSelector",
    "RelayService",
    "ReplyContext",
    "ReplyHooks",
    "ReplyOutcome",
    "ReplyResolver",
    "ReplyResult",
    "SerialTaskQueue",
    "StaticReplyResolver",
    "TaskQueue",
    "parse_preference",
]
