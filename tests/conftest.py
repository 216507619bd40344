"""
Pytest configuration and fixtures for chatrelay tests.
"""

import asyncio
import sys
from pathlib import Path

import pytest
from pydantic import SecretStr

# Add the repository root to path for imports
# This allows `from chatrelay.transports import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from chatrelay.config import AppSettings, TwilioCredentials, get_settings  # noqa: E402
from chatrelay.transports import reset_transport_registry  # noqa: E402
from chatrelay.transports.session import (  # noqa: E402
    ConnectionUpdate,
    CredentialStore,
    MessagesUpsert,
    RawMessage,
)

SELF_JID = "15550001111@s.whatsapp.net"


class FakeSocket:
    """
    In-memory stand-in for one session-protocol connection.

    Events are fed with push(); the stream ends on end() or close().
    """

    def __init__(self, events=(), self_jid=SELF_JID):
        self.self_jid = self_jid
        self._queue = asyncio.Queue()
        for event in events:
            self._queue.put_nowait(event)
        self.sent = []
        self.presences = []
        self.read_keys = []
        self.closed = False
        self.media = b"\x89PNG fake image bytes"
        self.fail_read = False
        self.fail_download = False
        self.fail_presence = False

    def push(self, event):
        self._queue.put_nowait(event)

    def end(self):
        self._queue.put_nowait(None)

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def send_message(self, jid, payload):
        self.sent.append((jid, payload))
        return f"MSG{len(self.sent)}"

    async def send_presence(self, kind, jid=None):
        if self.fail_presence:
            raise RuntimeError("presence failed")
        self.presences.append((kind, jid))

    async def read_messages(self, keys):
        if self.fail_read:
            raise RuntimeError("read receipt failed")
        self.read_keys.extend(keys)

    async def download_media(self, message):
        if self.fail_download:
            raise RuntimeError("download failed")
        return self.media

    async def close(self):
        self.closed = True
        self.end()


class FakeSocketFactory:
    """Hands out prepared sockets in order and records the creds it was given."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.calls = []

    async def __call__(self, creds):
        self.calls.append(creds)
        return self.sockets.pop(0)


def text_upsert(*items, kind="notify"):
    """Build a MessagesUpsert from (id, jid, text) tuples."""
    return MessagesUpsert(
        messages=tuple(
            RawMessage(id=msg_id, remote_jid=jid, timestamp=1700000000, content={"conversation": text})
            for msg_id, jid, text in items
        ),
        kind=kind,
    )


OPEN = ConnectionUpdate(connection="open")


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Fresh transport registry and settings cache for every test."""
    reset_transport_registry()
    get_settings.cache_clear()
    yield
    reset_transport_registry()
    get_settings.cache_clear()


@pytest.fixture
def twilio_credentials():
    return TwilioCredentials(
        account_sid="AC123",
        whatsapp_from="+14155238886",
        auth_token=SecretStr("token"),
    )


@pytest.fixture
def settings(tmp_path):
    return AppSettings(
        home=tmp_path,
        twilio_account_sid="AC123",
        twilio_auth_token=SecretStr("token"),
        twilio_whatsapp_from="+14155238886",
    )


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(tmp_path / "credentials")


@pytest.fixture
def sample_phone():
    """Sample phone number for testing."""
    return "+15551234567"
