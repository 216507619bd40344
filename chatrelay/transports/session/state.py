"""
Session connection state machine.

    DISCONNECTED -> CONNECTING -> AWAITING_PAIRING -> OPEN -> CLOSED
                               \\-> OPEN             \\-> CLOSED
    CLOSED -> CONNECTING (new attempt)
    CONNECTING -> CLOSED ("closed before opening": dropped before the first open)

CLOSED is terminal
for one attempt and carries a classified reason.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from chatrelay.errors import InvalidTransitionError

from .socket import LOGGED_OUT_CODE, RESTART_REQUIRED_CODE

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"


class CloseKind(str, Enum):
    """Classification of a connection close."""

    LOGGED_OUT = "logged_out"  # Fatal: credentials revoked, re-pair
    RESTART_REQUIRED = "restart_required"  # Transient: reconnect once after pairing
    OTHER = "other"  # Surface to caller, no automatic retry


@dataclass(frozen=True, slots=True)
class CloseReason:
    kind: CloseKind
    status_code: int | None = None
    message: str = ""

    def format(self) -> str:
        if self.status_code is None:
            return self.message or "status=unknown"
        return f"status={self.status_code} {self.message}".rstrip()


def classify_close(status_code: int | None, message: str = "") -> CloseReason:
    """Map a protocol close code to a CloseReason."""
    if status_code == LOGGED_OUT_CODE:
        kind = CloseKind.LOGGED_OUT
    elif status_code == RESTART_REQUIRED_CODE:
        kind = CloseKind.RESTART_REQUIRED
    else:
        kind = CloseKind.OTHER
    return CloseReason(kind=kind, status_code=status_code, message=message)


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset(
        {SessionState.AWAITING_PAIRING, SessionState.OPEN, SessionState.CLOSED}
    ),
    SessionState.AWAITING_PAIRING: frozenset({SessionState.OPEN, SessionState.CLOSED}),
    SessionState.OPEN: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset({SessionState.CONNECTING}),
}


class SessionStateMachine:
    """
    Guards SessionState transitions against TRANSITIONS.

    Example:
        machine = SessionStateMachine()
        machine.transition(SessionState.CONNECTING)
        machine.transition(SessionState.OPEN)
        machine.transition(SessionState.CLOSED, classify_close(428))
    """

    def __init__(self) -> None:
        self._state = SessionState.DISCONNECTED
        self._close_reason: CloseReason | None = None
        self._history: list[SessionState] = [self._state]

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def close_reason(self) -> CloseReason | None:
        """Reason of the latest CLOSED transition (reset on reconnect)."""
        return self._close_reason

    @property
    def history(self) -> list[SessionState]:
        return list(self._history)

    def can_transition(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: SessionState, reason: CloseReason | None = None) -> None:
        """
        Move to `target`.

        Raises:
            InvalidTransitionError: If the edge is not in TRANSITIONS
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state.value, target.value)

        logger.debug(f"Session: {self._state.value} -> {target.value}")
        if target == SessionState.CLOSED:
            self._close_reason = reason or CloseReason(kind=CloseKind.OTHER)
        elif target == SessionState.CONNECTING:
            self._close_reason = None
        self._state = target
        self._history.append(target)
