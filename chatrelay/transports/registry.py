"""
Transport Registry for chatrelay.

Process-wide lookup of live transport adapters by provider name. The
relay service registers the transport it starts; the webhook app
registers the poll transport it answers through.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatrelay.errors import RelayError

if TYPE_CHECKING:
    from .protocol import Provider, TransportAdapter

logger = logging.getLogger(__name__)


class TransportNotFoundError(RelayError):
    """
    Raised when no adapter is registered for a provider.

    Usually a wiring error: something asked for "web" while only the
    poll transport was started.
    """


class TransportRegistry:
    """
    Registry for transport adapters, keyed by channel_id.

    Example:
        registry = get_transport_registry()
        registry.register(create_twilio_transport())

        transport = registry.get(Provider.TWILIO)
        await transport.send_message("+15551234567", "Hello!")
    """

    def __init__(self) -> None:
        self._adapters: dict[str, "TransportAdapter"] = {}

    @staticmethod
    def _key(channel: "str | Provider") -> str:
        return getattr(channel, "value", channel)

    def register(self, adapter: "TransportAdapter") -> None:
        """Register an adapter, replacing any previous one for its channel."""
        channel_id = adapter.channel_id
        if channel_id in self._adapters:
            logger.warning(f"Replacing existing transport adapter: {channel_id}")
        self._adapters[channel_id] = adapter
        logger.info(f"Registered transport adapter: {channel_id}")

    def get(self, channel: "str | Provider") -> "TransportAdapter":
        """
        Get the adapter for a channel.

        Raises:
            TransportNotFoundError: If nothing is registered for it
        """
        key = self._key(channel)
        adapter = self._adapters.get(key)
        if adapter is None:
            available = ", ".join(self._adapters) or "(none)"
            raise TransportNotFoundError(
                f"No transport adapter registered for channel: {key}. Available: {available}"
            )
        return adapter

    def has(self, channel: "str | Provider") -> bool:
        return self._key(channel) in self._adapters

    @property
    def registered_channels(self) -> list[str]:
        return list(self._adapters)

    def unregister(self, channel: "str | Provider") -> bool:
        """Remove an adapter. Returns False if none was registered."""
        key = self._key(channel)
        if self._adapters.pop(key, None) is None:
            return False
        logger.info(f"Unregistered transport adapter: {key}")
        return True

    def clear(self) -> None:
        self._adapters.clear()
        logger.debug("Cleared all transport adapters")


# Global registry instance
_registry: TransportRegistry | None = None


def get_transport_registry() -> TransportRegistry:
    """Get the global registry, creating it on first access."""
    global _registry
    if _registry is None:
        _registry = TransportRegistry()
    return _registry


def get_transport(channel: "str | Provider") -> "TransportAdapter":
    return get_transport_registry().get(channel)


def register_transport(adapter: "TransportAdapter") -> None:
    get_transport_registry().register(adapter)


def reset_transport_registry() -> None:
    """Drop the global registry (tests)."""
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None
