"""
Tests for provider selection and the relay service.
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from conftest import OPEN, SELF_JID, FakeSocket, FakeSocketFactory, text_upsert

from chatrelay.errors import ConfigError, CredentialInvalidated, TransportConnectError
from chatrelay.relay import (
    AUTO,
    InboundPipeline,
    ProviderSelector,
    RelayService,
    StaticReplyResolver,
    parse_preference,
)
from chatrelay.transports import (
    Provider,
    SessionTransport,
    TransportRegistry,
    TwilioPollTransport,
)
from chatrelay.transports.session import ConnectionUpdate

ALICE_JID = "15551234567@s.whatsapp.net"


async def wait_until(condition, timeout=2.0):
    async def poll():
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def _twilio_client(*entries):
    client = MagicMock()
    client.messages.list.return_value = list(entries)
    client.messages.create.return_value = SimpleNamespace(sid="SMout", status="queued")
    return client


def _inbound_entry(sid="SMin", body="hello"):
    return SimpleNamespace(
        sid=sid,
        from_="whatsapp:+15551234567",
        to="whatsapp:+14155238886",
        body=body,
        direction="inbound",
        date_created=datetime.now(timezone.utc),
    )


# =============================================================================
# Selector Tests
# =============================================================================


class TestProviderSelector:
    """Tests for ProviderSelector."""

    def test_explicit_provider_wins(self, credential_store):
        selector = ProviderSelector(credential_store)
        assert selector.resolve("web") == Provider.WEB
        assert selector.resolve(Provider.TWILIO) == Provider.TWILIO

    def test_auto_without_credentials(self, credential_store):
        assert ProviderSelector(credential_store).resolve(AUTO) == Provider.TWILIO

    def test_auto_with_credentials(self, credential_store):
        credential_store.save({"k": 1}, SELF_JID)
        assert ProviderSelector(credential_store).resolve() == Provider.WEB

    def test_auto_with_unreadable_credentials(self, credential_store):
        credential_store.directory.mkdir(parents=True)
        credential_store.creds_path.write_text("{broken")

        assert ProviderSelector(credential_store).resolve(AUTO) == Provider.TWILIO


class TestParsePreference:
    """Tests for parse_preference()."""

    @pytest.mark.parametrize("value", [None, "", "auto", " AUTO "])
    def test_auto_values(self, value):
        assert parse_preference(value) is None

    def test_case_insensitive(self):
        assert parse_preference("WEB") == Provider.WEB

    def test_unknown_provider(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_preference("telegram")

        assert "telegram" in str(exc_info.value)
        assert "auto, web, twilio" in str(exc_info.value)


# =============================================================================
# Relay Service Tests
# =============================================================================


class TestRelayService:
    """Tests for RelayService.run()."""

    def _service(self, credential_store, session_factory=None, client=None, registry=None):
        return RelayService(
            selector=ProviderSelector(credential_store),
            pipeline=InboundPipeline(resolver=StaticReplyResolver("Thanks!")),
            session_factory=session_factory,
            twilio_factory=(
                (lambda: TwilioPollTransport(self.credentials, client=client, interval=0.01))
                if client is not None
                else None
            ),
            registry=registry or TransportRegistry(),
        )

    @pytest.fixture(autouse=True)
    def _credentials(self, twilio_credentials):
        self.credentials = twilio_credentials

    @pytest.mark.asyncio
    async def test_poll_relay_replies_and_stops(self, credential_store):
        client = _twilio_client(_inbound_entry())
        registry = TransportRegistry()
        service = self._service(credential_store, client=client, registry=registry)

        task = asyncio.create_task(service.run(AUTO))
        await wait_until(lambda: client.messages.create.called)

        assert service.provider == Provider.TWILIO
        assert registry.has("twilio") is True
        assert client.messages.create.call_args[1]["body"] == "Thanks!"
        assert client.messages.create.call_args[1]["to"] == "whatsapp:+15551234567"

        await service.stop()
        await asyncio.wait_for(task, 2)

        assert registry.has("twilio") is False
        # Same message listed on every poll, answered once
        assert client.messages.create.call_count == 1

    @pytest.mark.asyncio
    async def test_session_relay(self, credential_store):
        credential_store.save({"k": 1}, SELF_JID)
        sock = FakeSocket([OPEN, text_upsert(("A", ALICE_JID, "hello"))])
        registry = TransportRegistry()
        service = self._service(
            credential_store,
            session_factory=lambda: SessionTransport(credential_store, FakeSocketFactory(sock)),
            registry=registry,
        )

        task = asyncio.create_task(service.run(AUTO))
        await wait_until(lambda: sock.sent)

        assert service.provider == Provider.WEB
        assert registry.has("web") is True
        assert sock.sent == [(ALICE_JID, {"text": "Thanks!"})]
        assert ("available", None) in sock.presences
        assert ("composing", ALICE_JID) in sock.presences

        await service.stop()
        await asyncio.wait_for(task, 2)

        assert sock.closed is True
        assert registry.has("web") is False

    @pytest.mark.asyncio
    async def test_auto_falls_back_when_session_fails(self, credential_store):
        credential_store.save({"k": 1}, SELF_JID)
        client = _twilio_client()
        service = self._service(
            credential_store,
            session_factory=lambda: SessionTransport(credential_store),
            client=client,
        )

        task = asyncio.create_task(service.run(AUTO))
        await wait_until(lambda: client.messages.list.called)

        assert service.provider == Provider.TWILIO

        await service.stop()
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_auto_falls_back_when_session_drops(self, credential_store):
        credential_store.save({"k": 1}, SELF_JID)
        sock = FakeSocket([OPEN])
        client = _twilio_client()
        service = self._service(
            credential_store,
            session_factory=lambda: SessionTransport(credential_store, FakeSocketFactory(sock)),
            client=client,
        )

        task = asyncio.create_task(service.run(AUTO))
        await wait_until(lambda: service.provider == Provider.WEB and sock.presences)
        sock.push(ConnectionUpdate(connection="close", status_code=428, error="Connection Closed"))
        await wait_until(lambda: client.messages.list.called)

        assert service.provider == Provider.TWILIO

        await service.stop()
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_explicit_web_does_not_fall_back(self, credential_store):
        client = _twilio_client()
        service = self._service(
            credential_store,
            session_factory=lambda: SessionTransport(credential_store),
            client=client,
        )

        with pytest.raises(TransportConnectError):
            await service.run("web")

        client.messages.list.assert_not_called()

    @pytest.mark.asyncio
    async def test_logout_is_fatal_in_auto_mode(self, credential_store):
        credential_store.save({"k": 1}, SELF_JID)
        sock = FakeSocket([ConnectionUpdate(connection="close", status_code=401)])
        client = _twilio_client()
        service = self._service(
            credential_store,
            session_factory=lambda: SessionTransport(credential_store, FakeSocketFactory(sock)),
            client=client,
        )

        with pytest.raises(CredentialInvalidated):
            await service.run(AUTO)

        assert credential_store.exists() is False
        client.messages.list.assert_not_called()

    @pytest.mark.asyncio
    async def test_twilio_not_configured(self, credential_store):
        service = self._service(credential_store)

        with pytest.raises(TransportConnectError):
            await service.run("twilio")
