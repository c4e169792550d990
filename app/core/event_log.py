"""
Violation Event Log — Accepted events kept for trend analysis and report roll-ups.

Appends are O(1). Readers take snapshots, so periodic analysis never blocks
ingestion.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta

from app.config import settings
from app.models.violation_models import ViolationEvent


class ViolationEventLog:
    """Bounded, time-pruned log of accepted violation events in arrival order."""

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = capacity or settings.event_log_capacity
        self._events: deque[ViolationEvent] = deque(maxlen=self.capacity)

    def append(self, event: ViolationEvent) -> None:
        self._events.append(event)

    def snapshot(self) -> list[ViolationEvent]:
        return list(self._events)

    def recent_for_user(
        self,
        user_id: str,
        window: timedelta,
        until: datetime,
    ) -> list[ViolationEvent]:
        """Events of user_id with timestamps in [until - window, until]."""
        start = until - window
        return [
            e for e in list(self._events)
            if e.user_id == user_id and start <= e.timestamp <= until
        ]

    def prune(self, cutoff: datetime) -> int:
        kept = [e for e in self._events if e.timestamp > cutoff]
        removed = len(self._events) - len(kept)
        self._events = deque(kept, maxlen=self.capacity)
        return removed

    def __len__(self) -> int:
        return len(self._events)
