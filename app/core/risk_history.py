"""
User Risk History — Bounded per-user score log with derived aggregates.

Append-only: the oldest score is evicted once a user's log is at capacity.
Callers serialize writes per user; reads return immutable snapshots.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Iterable

from app.config import settings
from app.models.score_models import (
    RiskProfile,
    SeverityScore,
    TrendDirection,
    UserRiskHistory,
)

logger = logging.getLogger("examguard.history")

# Points a 3-score window must move before it counts as a trend
TREND_DELTA = 5.0

RISK_PROFILE_BANDS: tuple[tuple[float, RiskProfile], ...] = (
    (60.0, RiskProfile.CRITICAL_RISK),
    (40.0, RiskProfile.HIGH_RISK),
    (20.0, RiskProfile.MODERATE_RISK),
)


def summarize_history(user_id: str, scores: Iterable[SeverityScore]) -> UserRiskHistory:
    """Build a history snapshot with average, trend direction and risk profile."""
    ordered = list(scores)
    if not ordered:
        return UserRiskHistory(user_id=user_id)

    average = sum(s.total_score for s in ordered) / len(ordered)

    trend = TrendDirection.STABLE
    if len(ordered) >= 3:
        first = ordered[-3].total_score
        last = ordered[-1].total_score
        if last > first + TREND_DELTA:
            trend = TrendDirection.INCREASING
        elif last < first - TREND_DELTA:
            trend = TrendDirection.DECREASING

    profile = RiskProfile.LOW_RISK
    for floor, band in RISK_PROFILE_BANDS:
        if average >= floor:
            profile = band
            break

    return UserRiskHistory(
        user_id=user_id,
        scores=ordered,
        last_calculated=ordered[-1].calculated_at,
        average_score=average,
        trend_direction=trend,
        risk_profile=profile,
    )


class RiskHistoryStore:
    """In-memory store of per-user score logs."""

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = capacity or settings.history_capacity
        self._scores: dict[str, deque[SeverityScore]] = {}

    def append(self, user_id: str, score: SeverityScore) -> UserRiskHistory:
        log = self._scores.get(user_id)
        if log is None:
            log = deque(maxlen=self.capacity)
            self._scores[user_id] = log
        log.append(score)
        return summarize_history(user_id, log)

    def snapshot(self, user_id: str) -> UserRiskHistory | None:
        log = self._scores.get(user_id)
        if not log:
            return None
        return summarize_history(user_id, log)

    def snapshots(self) -> dict[str, UserRiskHistory]:
        return {uid: summarize_history(uid, log) for uid, log in list(self._scores.items()) if log}

    def users(self) -> list[str]:
        return list(self._scores)

    def reset(self, user_id: str) -> bool:
        return self._scores.pop(user_id, None) is not None

    def prune(self, cutoff: datetime) -> int:
        """Drop scores calculated before cutoff. Users left empty are removed."""
        removed = 0
        for user_id in list(self._scores):
            log = self._scores[user_id]
            kept = [s for s in log if s.calculated_at > cutoff]
            removed += len(log) - len(kept)
            if kept:
                self._scores[user_id] = deque(kept, maxlen=self.capacity)
            else:
                del self._scores[user_id]
        if removed:
            logger.info(f"Pruned {removed} scores older than {cutoff.isoformat()}")
        return removed

    def clear(self) -> None:
        self._scores.clear()
