"""
Outbound delivery tracking.

DeliveryRecord follows a monotonic rule: once a terminal status is
reached, later observations are ignored.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .protocol import Provider

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryStatus(str, Enum):
    """Delivery state of an outbound message."""

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    UNDELIVERED = "undelivered"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"  # Local only: caller stopped waiting

    @classmethod
    def from_provider(cls, raw: str | None) -> "DeliveryStatus":
        """
        Map a provider status string onto the relay's status set.

        Pre-send states (accepted, scheduled, ...) collapse to QUEUED,
        in-transit states to SENT. Unknown values are QUEUED.
        """
        value = (raw or "").strip().lower()
        if value in _PROVIDER_STATUS_MAP:
            return _PROVIDER_STATUS_MAP[value]
        try:
            return cls(value)
        except ValueError:
            logger.debug(f"Unknown provider status {raw!r}, treating as queued")
            return cls.QUEUED

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self in SUCCESS_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATUSES


_PROVIDER_STATUS_MAP = {
    "accepted": DeliveryStatus.QUEUED,
    "scheduled": DeliveryStatus.QUEUED,
    "sending": DeliveryStatus.SENT,
    "cancelled": DeliveryStatus.CANCELED,
}

SUCCESS_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.READ})
FAILURE_STATUSES = frozenset(
    {DeliveryStatus.FAILED, DeliveryStatus.UNDELIVERED, DeliveryStatus.CANCELED}
)
TERMINAL_STATUSES = SUCCESS_STATUSES | FAILURE_STATUSES


@dataclass
class DeliveryRecord:
    """
    Tracked delivery state of one outbound message.

    Attributes:
        message_id: Provider message id
        provider: Transport that accepted the message
        status: Current status
        last_checked_at: When the status was last observed
        error_code: Provider error code for failed deliveries
        error_message: Provider error text for failed deliveries
        history: Every status accepted by transition(), in order
    """

    message_id: str
    provider: Provider
    status: DeliveryStatus = DeliveryStatus.QUEUED
    last_checked_at: datetime = field(default_factory=_utc_now)
    error_code: int | str | None = None
    error_message: str | None = None
    history: list[DeliveryStatus] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(
        self,
        status: DeliveryStatus,
        checked_at: datetime | None = None,
        error_code: int | str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """
        Apply an observed status.

        Returns:
            False if the record was already terminal (observation ignored)
        """
        if self.is_terminal:
            logger.debug(
                f"Ignoring {status.value} for {self.message_id}: "
                f"already terminal ({self.status.value})"
            )
            return False

        self.last_checked_at = checked_at or _utc_now()
        if status != self.status:
            self.status = status
            self.history.append(status)
        if error_code is not None:
            self.error_code = error_code
        if error_message:
            self.error_message = error_message
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "provider": self.provider.value,
            "status": self.status.value,
            "last_checked_at": self.last_checked_at.isoformat(),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
