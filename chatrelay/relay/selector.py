"""
Provider selection.

An explicit provider is used as-is. "auto" picks the session transport
when a readable credential snapshot exists, otherwise the poll transport.
"""
from __future__ import annotations

import logging

from chatrelay.errors import ConfigError
from chatrelay.transports import CredentialStore, Provider

logger = logging.getLogger(__name__)

AUTO = "auto"


def parse_preference(value: str | Provider | None) -> Provider | None:
    """
    Parse a CLI/config provider preference.

    Returns:
        The explicit Provider, or None for auto-detection

    Raises:
        ConfigError: For an unknown provider name
    """
    if value is None or isinstance(value, Provider):
        return value
    normalized = value.strip().lower()
    if normalized in ("", AUTO):
        return None
    try:
        return Provider(normalized)
    except ValueError:
        choices = ", ".join([AUTO, *(p.value for p in Provider)])
        raise ConfigError(f"Unknown provider '{value}' (choose from {choices})") from None


class ProviderSelector:
    """
    Chooses which transport serves an operation.

    Example:
        selector = ProviderSelector(CredentialStore(settings.credentials_dir))
        provider = selector.resolve("auto")
    """

    def __init__(self, credentials: CredentialStore):
        self._credentials = credentials

    def resolve(self, preference: str | Provider | None = AUTO) -> Provider:
        explicit = parse_preference(preference)
        if explicit is not None:
            return explicit

        if self._credentials.has_valid_snapshot():
            logger.debug(f"Session credentials found in {self._credentials.directory}; using web")
            return Provider.WEB

        logger.debug("No session credentials; using twilio")
        return Provider.TWILIO
