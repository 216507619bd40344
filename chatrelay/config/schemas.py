"""
Configuration Schemas for chatrelay.

Pydantic models for process settings.

Security:
    Sensitive fields use SecretStr to prevent accidental logging
    of credentials. Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, model_validator


def _default_home() -> Path:
    return Path.home() / ".chatrelay"


class TwilioCredentials(BaseModel):
    """
    Validated poll-transport credentials.

    Either an auth token or an API key/secret pair authenticates the
    account; the API key pair wins when both are configured.
    """

    account_sid: str
    whatsapp_from: str
    auth_token: SecretStr | None = None
    api_key: str | None = None
    api_secret: SecretStr | None = None

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key and self.api_secret)


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access. Built from the environment by
    `chatrelay.config.get_settings()`.
    """

    # Service identity
    service_name: str = "chatrelay"
    debug: bool = False

    # State on disk
    home: Path = Field(default_factory=_default_home, description="State root directory")
    credentials_dir: Path | None = Field(None, description="Session credential directory")
    media_dir: Path | None = Field(None, description="Inbound media directory")

    # Twilio (poll transport)
    twilio_account_sid: str = Field(default="", description="Twilio account SID")
    twilio_auth_token: SecretStr = Field(default=SecretStr(""), description="Twilio auth token")
    twilio_api_key: str = Field(default="", description="Twilio API key SID")
    twilio_api_secret: SecretStr = Field(default=SecretStr(""), description="Twilio API key secret")
    twilio_whatsapp_from: str = Field(default="", description="Sender number (E.164)")

    # Relay loop
    poll_interval: float = Field(5.0, gt=0, description="Seconds between poll iterations")
    lookback_minutes: float = Field(5.0, ge=0, description="Initial poll lookback window")

    # One-shot send
    send_wait: float = Field(20.0, ge=0, description="Seconds to wait for delivery (0 = no wait)")
    send_poll: float = Field(2.0, gt=0, description="Seconds between delivery status polls")

    # Webhook ingress
    webhook_port: int = Field(42873, gt=0, lt=65536)
    webhook_path: str = "/webhook/whatsapp"

    # External collaborators (dotted import paths)
    session_client: str = Field(default="", description="module:factory of the session-protocol client")
    reply_resolver: str = Field(default="", description="module:resolver returning auto-replies")
    auto_reply: str = Field(default="", description="Static auto-reply text")

    @model_validator(mode="after")
    def _fill_state_dirs(self) -> "AppSettings":
        if self.credentials_dir is None:
            self.credentials_dir = self.home / "credentials"
        if self.media_dir is None:
            self.media_dir = self.home / "media"
        return self
