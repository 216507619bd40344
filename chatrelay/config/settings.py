"""
Environment-backed settings for chatrelay.

Twilio variables keep the provider's conventional names
(TWILIO_ACCOUNT_SID, ...); everything relay-specific is prefixed
with CHATRELAY_.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationError

from chatrelay.errors import ConfigError

from .schemas import AppSettings, TwilioCredentials

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHATRELAY_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern; call `get_settings.cache_clear()`
    after changing the environment (tests do).

    Raises:
        ConfigError: If a numeric variable cannot be parsed
    """
    values: dict[str, object] = {
        "debug": (_env("DEBUG", "false") or "").lower() == "true",
        "twilio_account_sid": os.getenv("TWILIO_ACCOUNT_SID", ""),
        "twilio_auth_token": os.getenv("TWILIO_AUTH_TOKEN", ""),
        "twilio_api_key": os.getenv("TWILIO_API_KEY", ""),
        "twilio_api_secret": os.getenv("TWILIO_API_SECRET", ""),
        "twilio_whatsapp_from": os.getenv("TWILIO_WHATSAPP_FROM", ""),
        "session_client": _env("SESSION_CLIENT", ""),
        "reply_resolver": _env("REPLY_RESOLVER", ""),
        "auto_reply": _env("AUTO_REPLY", ""),
        "webhook_path": _env("WEBHOOK_PATH", "/webhook/whatsapp"),
    }

    optional = {
        "home": "HOME",
        "credentials_dir": "CREDENTIALS_DIR",
        "media_dir": "MEDIA_DIR",
        "poll_interval": "POLL_INTERVAL",
        "lookback_minutes": "LOOKBACK_MINUTES",
        "send_wait": "SEND_WAIT",
        "send_poll": "SEND_POLL",
        "webhook_port": "WEBHOOK_PORT",
    }
    for field_name, env_name in optional.items():
        raw = _env(env_name)
        if raw:
            values[field_name] = Path(raw).expanduser() if field_name.endswith(("home", "_dir")) else raw

    try:
        return AppSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def require_twilio(settings: AppSettings | None = None) -> TwilioCredentials:
    """
    Validate poll-transport configuration.

    Returns:
        TwilioCredentials ready for client construction

    Raises:
        ConfigError: Naming the first missing variable
    """
    settings = settings or get_settings()

    if not settings.twilio_account_sid:
        raise ConfigError("Missing env var TWILIO_ACCOUNT_SID")
    if not settings.twilio_whatsapp_from:
        raise ConfigError("Missing env var TWILIO_WHATSAPP_FROM")

    api_secret = settings.twilio_api_secret.get_secret_value()
    auth_token = settings.twilio_auth_token.get_secret_value()
    if settings.twilio_api_key and api_secret:
        return TwilioCredentials(
            account_sid=settings.twilio_account_sid,
            whatsapp_from=settings.twilio_whatsapp_from,
            api_key=settings.twilio_api_key,
            api_secret=settings.twilio_api_secret,
        )
    if auth_token:
        return TwilioCredentials(
            account_sid=settings.twilio_account_sid,
            whatsapp_from=settings.twilio_whatsapp_from,
            auth_token=settings.twilio_auth_token,
        )

    raise ConfigError(
        "Provide either TWILIO_AUTH_TOKEN or (TWILIO_API_KEY and TWILIO_API_SECRET)"
    )
