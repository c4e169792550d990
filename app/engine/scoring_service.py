"""
Scoring Service — Stateful wrapper around the pure severity calculation.

Owns the user risk history, adaptive thresholds and score cache for one
engine instance. Writes for a user are serialized by a per-user lock;
different users never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from app.cache.ttl_cache import AdaptiveThresholdStore, ScoreCache
from app.config import settings
from app.core.risk_history import RiskHistoryStore
from app.core.severity_scorer import (
    compute_severity_score,
    conservative_default_score,
)
from app.errors import CalculationError
from app.integrations.collaborators import AuditSink
from app.models.policy_models import ScoringPolicy
from app.models.score_models import SeverityScore, UserRiskHistory
from app.models.violation_models import ScoringContext, assume_utc

logger = logging.getLogger("examguard.scoring")


class KeyedLocks:
    """Lazily created asyncio.Lock per key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def retain(self, keys: Iterable[str]) -> int:
        """Drop idle locks whose key is not in keys."""
        keep = set(keys)
        idle = [k for k, lock in self._locks.items() if k not in keep and not lock.locked()]
        for key in idle:
            del self._locks[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks


class SeverityScoringService:
    """
    Scores violation events and records the side effects.

    Usage:
        service = SeverityScoringService()
        score = await service.score(ctx)
    """

    def __init__(
        self,
        policy: ScoringPolicy | None = None,
        history: RiskHistoryStore | None = None,
        thresholds: AdaptiveThresholdStore | None = None,
        cache: ScoreCache | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.policy = policy or ScoringPolicy()
        self.history = history or RiskHistoryStore()
        self.thresholds = thresholds or AdaptiveThresholdStore()
        self.cache = cache or ScoreCache()
        self.audit = audit
        self.user_locks = KeyedLocks()

    async def score(self, ctx: ScoringContext) -> SeverityScore:
        """
        Score one event. Never raises.

        The history snapshot in ctx is replaced by the store's current one,
        read under the user's lock. On an internal failure a conservative
        low-risk score is returned and nothing is recorded.
        """
        user_id = ctx.user_id
        cache_key = (user_id, ctx.event.id, ctx.current_time.isoformat())

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Score cache hit: {ctx.event.id}")
            return cached

        async with self.user_locks.get(user_id):
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

            try:
                snapshot = self.history.snapshot(user_id)
                scoring_ctx = ctx.model_copy(update={"user_history": snapshot})
                threshold = (
                    self.thresholds.get(user_id, ctx.event.event_type)
                    if self.policy.adaptive.enabled
                    else None
                )
                score = compute_severity_score(scoring_ctx, threshold, self.policy)
            except Exception as e:
                error = CalculationError(f"Scoring failed for event {ctx.event.id}: {e}")
                logger.error(str(error), exc_info=True)
                self._report_failure(ctx, error)
                return conservative_default_score(ctx.event, ctx.current_time)

            # ── Side effects, atomic per user ──
            self.history.append(user_id, score)
            if self.policy.adaptive.enabled:
                self.thresholds.update(
                    user_id, ctx.event.event_type, score.total_score, self.policy.adaptive
                )
            self.cache.put(cache_key, score)

        logger.info(
            f"[{ctx.event.id}] {ctx.event.event_type.value} scored "
            f"{score.total_score:.1f} ({score.risk_level.value}, confidence={score.confidence:.2f})"
        )
        return score

    def _report_failure(self, ctx: ScoringContext, error: CalculationError) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log_security_event(
                "severity_calculation_failed",
                "high",
                str(error),
                {
                    "event_id": ctx.event.id,
                    "exam_id": ctx.event.exam_id,
                    "user_id": ctx.user_id,
                    "session_id": ctx.event.session_id,
                    "event_type": ctx.event.event_type.value,
                },
            )
        except Exception:
            logger.exception("Audit sink failed while reporting a scoring error")

    def get_history(self, user_id: str) -> UserRiskHistory | None:
        return self.history.snapshot(user_id)

    def get_adaptive_thresholds(self, user_id: str) -> dict[str, float]:
        return self.thresholds.for_user(user_id)

    def reset_user(self, user_id: str) -> None:
        """Forget a user's history, thresholds and cached scores."""
        self.history.reset(user_id)
        self.thresholds.reset_user(user_id)
        self.cache.invalidate_user(user_id)
        self.user_locks.discard(user_id)
        logger.info(f"Risk state reset for user {user_id}")

    def clear_old_data(
        self,
        older_than_days: float | None = None,
        now: datetime | None = None,
    ) -> int:
        """Drop history older than the retention window and evict expired cache entries."""
        days = older_than_days if older_than_days is not None else settings.history_retention_days
        cutoff = (assume_utc(now) if now else datetime.now(timezone.utc)) - timedelta(days=days)
        removed = self.history.prune(cutoff)
        self.user_locks.retain(self.history.users())
        self.cache.purge_expired()
        self.thresholds.purge_expired()
        return removed

    def export_scoring_data(self, user_id: str | None = None) -> dict[str, Any]:
        if user_id is not None:
            history = self.history.snapshot(user_id)
            return {
                "user_id": user_id,
                "severity_history": history.model_dump(mode="json") if history else None,
                "adaptive_thresholds": self.get_adaptive_thresholds(user_id),
            }

        return {
            "histories": {
                uid: h.model_dump(mode="json") for uid, h in self.history.snapshots().items()
            },
            "adaptive_thresholds": self.thresholds.export(),
            "policy": self.policy.model_dump(mode="json"),
        }

    def shutdown(self) -> None:
        self.history.clear()
        self.thresholds.clear()
        self.cache.clear()
