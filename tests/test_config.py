"""
Tests for configuration loading and dependency wiring.
"""

import sys
import types

import pytest
from pydantic import SecretStr

from chatrelay.app.dependencies import (
    build_relay_service,
    build_reply_resolver,
    load_socket_factory,
)
from chatrelay.config import AppSettings, get_settings, require_twilio
from chatrelay.errors import ConfigError
from chatrelay.relay import (
    CallableReplyResolver,
    ReplyResult,
    StaticReplyResolver,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_API_KEY",
        "TWILIO_API_SECRET",
        "TWILIO_WHATSAPP_FROM",
        "CHATRELAY_HOME",
        "CHATRELAY_CREDENTIALS_DIR",
        "CHATRELAY_POLL_INTERVAL",
        "CHATRELAY_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# =============================================================================
# Settings Tests
# =============================================================================


class TestGetSettings:
    """Tests for get_settings()."""

    def test_defaults(self, clean_env):
        settings = get_settings()

        assert settings.poll_interval == 5.0
        assert settings.lookback_minutes == 5.0
        assert settings.send_wait == 20.0
        assert settings.credentials_dir == settings.home / "credentials"
        assert settings.media_dir == settings.home / "media"

    def test_reads_environment(self, clean_env, tmp_path):
        clean_env.setenv("CHATRELAY_HOME", str(tmp_path))
        clean_env.setenv("CHATRELAY_POLL_INTERVAL", "2.5")
        clean_env.setenv("CHATRELAY_DEBUG", "true")
        clean_env.setenv("TWILIO_ACCOUNT_SID", "AC1")

        settings = get_settings()

        assert settings.home == tmp_path
        assert settings.credentials_dir == tmp_path / "credentials"
        assert settings.poll_interval == 2.5
        assert settings.debug is True
        assert settings.twilio_account_sid == "AC1"

    def test_cached(self, clean_env):
        assert get_settings() is get_settings()

    def test_invalid_number(self, clean_env):
        clean_env.setenv("CHATRELAY_POLL_INTERVAL", "fast")

        with pytest.raises(ConfigError):
            get_settings()

    def test_non_positive_interval(self, clean_env):
        clean_env.setenv("CHATRELAY_POLL_INTERVAL", "0")

        with pytest.raises(ConfigError):
            get_settings()

    def test_secrets_are_masked(self, settings):
        assert str(settings.twilio_auth_token) == "**********"
        assert "'token'" not in repr(settings)


class TestRequireTwilio:
    """Tests for require_twilio()."""

    def test_auth_token(self, settings):
        creds = require_twilio(settings)

        assert creds.account_sid == "AC123"
        assert creds.uses_api_key is False
        assert creds.auth_token.get_secret_value() == "token"

    def test_api_key_wins(self, settings):
        creds = require_twilio(
            settings.model_copy(
                update={"twilio_api_key": "SK1", "twilio_api_secret": SecretStr("secret")}
            )
        )

        assert creds.uses_api_key is True
        assert creds.api_key == "SK1"

    @pytest.mark.parametrize(
        "update,missing",
        [
            ({"twilio_account_sid": ""}, "TWILIO_ACCOUNT_SID"),
            ({"twilio_whatsapp_from": ""}, "TWILIO_WHATSAPP_FROM"),
            ({"twilio_auth_token": SecretStr("")}, "TWILIO_AUTH_TOKEN"),
        ],
    )
    def test_missing(self, settings, update, missing):
        with pytest.raises(ConfigError) as exc_info:
            require_twilio(settings.model_copy(update=update))

        assert missing in str(exc_info.value)

    def test_key_without_secret(self, settings):
        with pytest.raises(ConfigError):
            require_twilio(
                settings.model_copy(
                    update={"twilio_auth_token": SecretStr(""), "twilio_api_key": "SK1"}
                )
            )


# =============================================================================
# Wiring Tests
# =============================================================================


@pytest.fixture
def plugin_module(monkeypatch):
    """Registers a throwaway module exposing resolver and client hooks."""
    module = types.ModuleType("relay_plugins")

    async def reply(payload, hooks):
        return f"echo: {payload['Body']}"

    class EchoResolver:
        async def resolve(self, context, hooks):
            return ReplyResult(text=context.body)

    async def socket_factory(creds):
        return None

    module.reply = reply
    module.EchoResolver = EchoResolver
    module.socket_factory = socket_factory
    module.not_callable = 42
    monkeypatch.setitem(sys.modules, "relay_plugins", module)
    return module


class TestBuildReplyResolver:
    """Tests for build_reply_resolver()."""

    def test_explicit_text_wins(self, settings):
        resolver = build_reply_resolver(
            settings.model_copy(update={"auto_reply": "env text"}), reply_text="flag text"
        )
        assert isinstance(resolver, StaticReplyResolver)

    def test_none_configured(self, settings):
        assert build_reply_resolver(settings) is None

    def test_auto_reply_env(self, settings):
        resolver = build_reply_resolver(settings.model_copy(update={"auto_reply": "hi"}))
        assert isinstance(resolver, StaticReplyResolver)

    def test_coroutine_function(self, settings, plugin_module):
        resolver = build_reply_resolver(
            settings.model_copy(update={"reply_resolver": "relay_plugins:reply"})
        )
        assert isinstance(resolver, CallableReplyResolver)

    def test_resolver_class(self, settings, plugin_module):
        resolver = build_reply_resolver(
            settings.model_copy(update={"reply_resolver": "relay_plugins:EchoResolver"})
        )
        assert isinstance(resolver, plugin_module.EchoResolver)

    def test_unusable_object(self, settings, plugin_module):
        with pytest.raises(ConfigError):
            build_reply_resolver(
                settings.model_copy(update={"reply_resolver": "relay_plugins:not_callable"})
            )


class TestLoadSocketFactory:
    """Tests for load_socket_factory()."""

    def test_not_configured(self, settings):
        assert load_socket_factory(settings) is None

    def test_loads_factory(self, settings, plugin_module):
        factory = load_socket_factory(
            settings.model_copy(update={"session_client": "relay_plugins:socket_factory"})
        )
        assert factory is plugin_module.socket_factory

    def test_not_callable(self, settings, plugin_module):
        with pytest.raises(ConfigError):
            load_socket_factory(
                settings.model_copy(update={"session_client": "relay_plugins:not_callable"})
            )

    def test_missing_module(self, settings):
        with pytest.raises(ConfigError):
            load_socket_factory(
                settings.model_copy(update={"session_client": "no_such_module_xyz:factory"})
            )


def test_build_relay_service(settings):
    service = build_relay_service(settings, reply_text="hi", interval=1.0)
    assert service.provider is None
    assert service.stopping is False


def test_settings_model(tmp_path):
    settings = AppSettings(home=tmp_path, credentials_dir=tmp_path / "elsewhere")
    assert settings.credentials_dir == tmp_path / "elsewhere"
    assert settings.media_dir == tmp_path / "media"
