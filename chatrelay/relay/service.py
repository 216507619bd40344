"""
Relay Service for chatrelay.

Long-running relay loop: picks a transport, feeds every inbound message
through the InboundPipeline and, in auto mode, falls back from the
session transport to the poll transport when the session cannot be
opened or drops.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chatrelay.errors import CredentialInvalidated, TransportConnectError
from chatrelay.transports import (
    InboundMessage,
    Provider,
    SessionTransport,
    TransportRegistry,
    TwilioPollTransport,
    get_transport_registry,
)

from .inbound import InboundPipeline, ReplyOutcome
from .selector import ProviderSelector, parse_preference

logger = logging.getLogger(__name__)


class RelayService:
    """
    Runs the relay until stopped.

    Example:
        service = RelayService(selector, pipeline, session_factory, create_twilio_transport)
        await service.run("auto")   # returns after stop()
    """

    def __init__(
        self,
        selector: ProviderSelector,
        pipeline: InboundPipeline,
        session_factory: Callable[[], SessionTransport] | None = None,
        twilio_factory: Callable[[], TwilioPollTransport] | None = None,
        registry: TransportRegistry | None = None,
    ):
        self._selector = selector
        self._pipeline = pipeline
        self._session_factory = session_factory
        self._twilio_factory = twilio_factory
        self._registry = registry or get_transport_registry()
        self._stop_event = asyncio.Event()
        self._session: SessionTransport | None = None
        self._twilio: TwilioPollTransport | None = None
        self._provider: Provider | None = None

    @property
    def provider(self) -> Provider | None:
        """Transport currently serving the relay."""
        return self._provider

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def run(self, preference: str | Provider | None = "auto") -> None:
        """
        Relay until stop() is called.

        Raises:
            ConfigError: If the chosen transport is not configured
            CredentialInvalidated: The session was logged out (never falls back)
            TransportConnectError: An explicitly chosen session failed
        """
        explicit = parse_preference(preference)
        provider = self._selector.resolve(explicit)

        if provider == Provider.WEB:
            try:
                await self._run_session()
                return
            except CredentialInvalidated:
                raise
            except TransportConnectError as e:
                if self.stopping:
                    return
                if explicit is not None:
                    raise
                logger.warning(f"Web relay failed ({e}); falling back to twilio")

        if self.stopping:
            return
        await self._run_twilio()

    async def stop(self) -> None:
        """Stop relaying. Safe to call from a signal handler task."""
        self._stop_event.set()
        if self._twilio is not None:
            self._twilio.stop()
        if self._session is not None:
            await self._session.close()

    async def _run_session(self) -> None:
        if self._session_factory is None:
            raise TransportConnectError("Session transport is not configured", provider="web")

        transport = self._session_factory()
        self._session = transport
        self._provider = Provider.WEB
        try:
            await transport.connect(show_pairing_prompt=False)
            self._registry.register(transport)
            logger.info(
                f"Listening for personal WhatsApp messages as "
                f"{transport.credentials.read_identity().describe()}. Ctrl+C to stop."
            )
            await transport.send_presence("available")

            async for message in transport.messages():
                await self._handle(message, transport)
        finally:
            self._registry.unregister(transport.channel_id)
            await transport.close()
            self._session = None

    async def _run_twilio(self) -> None:
        if self._twilio_factory is None:
            raise TransportConnectError("Twilio transport is not configured", provider="twilio")

        transport = self._twilio_factory()
        self._twilio = transport
        self._provider = Provider.TWILIO
        self._registry.register(transport)
        try:
            await transport.monitor(
                on_message=lambda message: self._handle(message, transport),
                stop_event=self._stop_event,
            )
        finally:
            self._registry.unregister(transport.channel_id)
            self._twilio = None

    async def _handle(self, message: InboundMessage, transport) -> ReplyOutcome:
        return await self._pipeline.handle(message, transport)
