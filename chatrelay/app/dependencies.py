"""
Dependency wiring for chatrelay.

Builds transports, the inbound pipeline, the dispatcher and the relay
service from AppSettings. Shared by the CLI and the webhook app.

External collaborators are plugged in by dotted path:
    CHATRELAY_SESSION_CLIENT  module:factory -> SocketFactory
    CHATRELAY_REPLY_RESOLVER  module:resolver (object, class or coroutine function)
"""
from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Optional

from chatrelay.config import AppSettings, get_settings
from chatrelay.errors import ConfigError
from chatrelay.media import MediaGuard, MediaStore
from chatrelay.relay import (
    CallableReplyResolver,
    InboundPipeline,
    OutboundDispatcher,
    ProviderSelector,
    RelayService,
    ReplyResolver,
    SerialTaskQueue,
    StaticReplyResolver,
)
from chatrelay.transports import (
    CredentialStore,
    SessionTransport,
    create_twilio_transport,
    get_transport_registry,
    reset_transport_registry,
)
from chatrelay.transports.session import SocketFactory
from chatrelay.utils import load_object

logger = logging.getLogger(__name__)

__all__ = [
    "build_dispatcher",
    "build_pipeline",
    "build_relay_service",
    "build_reply_resolver",
    "build_session_transport",
    "configure_webhook",
    "get_credential_store",
    "get_pipeline",
    "get_settings",
    "initialize_services",
    "load_socket_factory",
    "shutdown_services",
]


def get_credential_store(settings: AppSettings | None = None) -> CredentialStore:
    settings = settings or get_settings()
    return CredentialStore(settings.credentials_dir)


def load_socket_factory(settings: AppSettings | None = None) -> SocketFactory | None:
    """Load the session-protocol client factory, if one is configured."""
    settings = settings or get_settings()
    if not settings.session_client:
        return None
    factory = load_object(settings.session_client)
    if not callable(factory):
        raise ConfigError(f"CHATRELAY_SESSION_CLIENT {settings.session_client!r} is not callable")
    return factory


def build_reply_resolver(
    settings: AppSettings | None = None,
    reply_text: str | None = None,
) -> ReplyResolver | None:
    """
    Resolver precedence: explicit reply text, CHATRELAY_REPLY_RESOLVER,
    CHATRELAY_AUTO_REPLY. None means no auto-replies.
    """
    settings = settings or get_settings()
    if reply_text:
        return StaticReplyResolver(reply_text)

    if settings.reply_resolver:
        obj = load_object(settings.reply_resolver)
        if inspect.isclass(obj):
            obj = obj()
        if isinstance(obj, ReplyResolver):
            return obj
        if inspect.iscoroutinefunction(obj):
            return CallableReplyResolver(obj)
        raise ConfigError(
            f"CHATRELAY_REPLY_RESOLVER {settings.reply_resolver!r} is neither a resolver "
            "nor a coroutine function"
        )

    if settings.auto_reply:
        return StaticReplyResolver(settings.auto_reply)
    return None


def build_session_transport(
    settings: AppSettings | None = None,
    on_pairing_code: Callable[[str], None] | None = None,
) -> SessionTransport:
    settings = settings or get_settings()
    return SessionTransport(
        credentials=get_credential_store(settings),
        socket_factory=load_socket_factory(settings),
        media_guard=MediaGuard(),
        media_store=MediaStore(settings.media_dir),
        on_pairing_code=on_pairing_code,
    )


def build_pipeline(
    settings: AppSettings | None = None,
    reply_text: str | None = None,
) -> InboundPipeline:
    settings = settings or get_settings()
    return InboundPipeline(
        resolver=build_reply_resolver(settings, reply_text),
        media_guard=MediaGuard(),
        task_queue=SerialTaskQueue(),
    )


def build_dispatcher(settings: AppSettings | None = None) -> OutboundDispatcher:
    settings = settings or get_settings()
    return OutboundDispatcher(
        session_factory=lambda: build_session_transport(settings),
        twilio_factory=lambda: create_twilio_transport(settings),
        media_guard=MediaGuard(),
    )


def build_relay_service(
    settings: AppSettings | None = None,
    reply_text: str | None = None,
    interval: float | None = None,
    lookback_minutes: float | None = None,
) -> RelayService:
    settings = settings or get_settings()
    overrides = {}
    if interval is not None:
        overrides["poll_interval"] = interval
    if lookback_minutes is not None:
        overrides["lookback_minutes"] = lookback_minutes
    if overrides:
        settings = settings.model_copy(update=overrides)

    return RelayService(
        selector=ProviderSelector(get_credential_store(settings)),
        pipeline=build_pipeline(settings, reply_text),
        session_factory=lambda: build_session_transport(settings),
        twilio_factory=lambda: create_twilio_transport(settings),
    )


# Webhook app state (initialized on startup)
_pipeline: Optional[InboundPipeline] = None
_reply_text: Optional[str] = None


def configure_webhook(reply_text: str | None = None) -> None:
    """Set the static reply used by the webhook app (before startup)."""
    global _reply_text, _pipeline
    _reply_text = reply_text
    _pipeline = None


def get_pipeline() -> InboundPipeline:
    """Get the webhook's inbound pipeline, creating it on first call."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(get_settings(), _reply_text)
    return _pipeline


async def initialize_services() -> None:
    """
    Register the poll transport the webhook replies through.

    Called from FastAPI lifespan.

    Raises:
        ConfigError: If the Twilio variables are incomplete
    """
    registry = get_transport_registry()
    registry.register(create_twilio_transport(get_settings()))
    get_pipeline()


async def shutdown_services() -> None:
    """Called from FastAPI lifespan."""
    global _pipeline
    _pipeline = None
    reset_transport_registry()
