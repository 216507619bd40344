"""
Session transport: a persistent, paired duplex connection.
"""

from .credentials import CredentialStore, SelfIdentity
from .events import extract_text, media_kind, media_placeholder
from .socket import (
    LOGGED_OUT_CODE,
    RESTART_REQUIRED_CODE,
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    RawMessage,
    SessionEvent,
    SessionSocket,
    SocketFactory,
)
from .state import (
    CloseKind,
    CloseReason,
    SessionState,
    SessionStateMachine,
    classify_close,
)
from .transport import SessionReplyChannel, SessionTransport, media_payload

__all__ = [
    "LOGGED_OUT_CODE",
    "RESTART_REQUIRED_CODE",
    "CloseKind",
    "CloseReason",
    "ConnectionUpdate",
    "CredentialStore",
    "CredentialsUpdate",
    "MessagesUpsert",
    "RawMessage",
    "SelfIdentity",
    "SessionEvent",
    "SessionReplyChannel",
    "SessionSocket",
    "SessionState",
    "SessionStateMachine",
    "SessionTransport",
    "SocketFactory",
    "classify_close",
    "extract_text",
    "media_kind",
    "media_payload",
    "media_placeholder",
]
