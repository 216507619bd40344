"""
Inbound dedup and watermark tracking.

Both transports can redeliver: the session protocol retries events and
the poll transport refetches entries around the watermark boundary.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime


class SeenSet:
    """
    Set of processed message ids, scoped to one transport instance.

    Append-only for the life of the process by default. Pass
    `max_entries` to bound memory; the oldest ids are forgotten first.
    """

    def __init__(self, max_entries: int | None = None):
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ids: OrderedDict[object, None] = OrderedDict()
        self._max_entries = max_entries

    def add(self, message_id: object) -> bool:
        """
        Record an id.

        Returns:
            True if the id was new, False if it had been seen already
        """
        if message_id in self._ids:
            return False
        self._ids[message_id] = None
        if self._max_entries is not None and len(self._ids) > self._max_entries:
            self._ids.popitem(last=False)
        return True

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class Watermark:
    """
    Poll boundary timestamp. Never regresses.

    Entries older than an already accepted one do not move it back,
    even if a later fetch returns them.
    """

    def __init__(self, initial: datetime):
        self._value = initial

    @property
    def value(self) -> datetime:
        return self._value

    def advance(self, timestamp: datetime | None) -> bool:
        """Move forward to `timestamp` if it is newer. Returns True if moved."""
        if timestamp is None or timestamp <= self._value:
            return False
        self._value = timestamp
        return True

    def __repr__(self) -> str:
        return f"Watermark({self._value.isoformat()})"
