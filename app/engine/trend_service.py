"""
Trend Service — Periodic cross-event analysis over the violation event log.

Each pass reads a snapshot of the event log and the risk history store,
runs every detector in a worker thread, and merges the results into bounded,
time-pruned stores. A finding that is detected again on a later pass updates
its stored entry instead of adding a new one. A failing detector is logged
and skipped; the rest of the pass still runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Hashable, TypeVar

from app.config import settings
from app.core.event_log import ViolationEventLog
from app.core.risk_history import RiskHistoryStore
from app.core.trend_analyzer import (
    analyze_user_trends,
    build_system_recommendations,
    coordination_to_pattern,
    detect_coordinated_cheating,
    detect_network_anomalies,
    detect_repeat_offenders,
    detect_suspicious_timing,
    group_by_user,
)
from app.integrations.collaborators import CoordinationSignalProvider, NeutralSignalProvider
from app.models.policy_models import TrendPolicy
from app.models.score_models import UserRiskHistory
from app.models.trend_models import (
    CoordinationAnalysis,
    PatternType,
    TrendAnalysisResult,
    TrendPattern,
    UserTrendProfile,
)
from app.models.violation_models import ViolationEvent, assume_utc

logger = logging.getLogger("examguard.trends")

T = TypeVar("T")
Finding = TypeVar("Finding", TrendPattern, CoordinationAnalysis)


def pattern_key(pattern: TrendPattern) -> tuple:
    """
    Identity of a pattern across passes.

    Repeat-offender windows slide with the clock, so those are keyed by user
    alone. Every other pattern is anchored at the start of the events it covers.
    """
    users = tuple(sorted(pattern.affected_users))
    if pattern.type == PatternType.REPEAT_OFFENDER:
        return (pattern.type.value, users)
    return (pattern.type.value, users, pattern.time_window.start)


def coordination_key(analysis: CoordinationAnalysis) -> tuple:
    return (tuple(sorted(analysis.involved_users)), analysis.time_window.start)


class TrendAnalysisService:
    """
    Runs the trend detectors on demand or on a fixed interval.

    Usage:
        service = TrendAnalysisService(event_log, history_store)
        result = await service.run_analysis()
        service.start()   # periodic, inside a running loop
    """

    def __init__(
        self,
        event_log: ViolationEventLog,
        history: RiskHistoryStore | None = None,
        policy: TrendPolicy | None = None,
        signals: CoordinationSignalProvider | None = None,
        interval_minutes: float | None = None,
    ) -> None:
        self.event_log = event_log
        self.history = history
        self.policy = policy or TrendPolicy()
        self.signals = signals or NeutralSignalProvider()
        self.interval_seconds = (
            interval_minutes if interval_minutes is not None
            else settings.trend_analysis_interval_minutes
        ) * 60

        self.capacity = self.policy.pattern_store_capacity
        self._patterns: dict[Hashable, TrendPattern] = {}
        self._coordinations: dict[Hashable, CoordinationAnalysis] = {}
        self._profiles: dict[str, UserTrendProfile] = {}
        self._last_result: TrendAnalysisResult | None = None
        self._task: asyncio.Task | None = None
        self._run_lock = asyncio.Lock()

    @property
    def last_result(self) -> TrendAnalysisResult | None:
        return self._last_result

    async def run_analysis(self, now: datetime | None = None) -> TrendAnalysisResult:
        """Run one full analysis pass. Passes never overlap."""
        async with self._run_lock:
            now = assume_utc(now) if now else datetime.now(timezone.utc)
            start_time = time.monotonic()

            # ── Step 1: Snapshot inputs on the loop ──
            horizon = now - timedelta(days=settings.pattern_retention_days)
            events = [e for e in self.event_log.snapshot() if e.timestamp > horizon]
            histories: dict[str, UserRiskHistory | None] = {}
            if self.history is not None:
                histories = {uid: self.history.snapshot(uid) for uid in {e.user_id for e in events}}
            logger.info(f"Trend analysis started over {len(events)} events")

            # ── Step 2: Detect off the loop ──
            patterns, coordinations, profiles = await asyncio.to_thread(
                self._detect, events, histories, now
            )

            # ── Step 3: Merge into the stores ──
            coordinations = [
                self._upsert(self._coordinations, coordination_key(c), c) for c in coordinations
            ]
            patterns += [coordination_to_pattern(c) for c in coordinations]
            patterns = [self._upsert(self._patterns, pattern_key(p), p) for p in patterns]
            self._profiles.update(profiles)

            result = TrendAnalysisResult(
                patterns=patterns,
                coordination_analyses=coordinations,
                user_profiles=profiles,
                events_analyzed=len(events),
                analysis_coverage=1.0 if events else 0.0,
                processing_time_ms=round((time.monotonic() - start_time) * 1000, 2),
                generated_at=now,
            )
            result.recommendations = build_system_recommendations(result)
            self._last_result = result

            logger.info(
                f"Trend analysis complete in {result.processing_time_ms:.0f}ms: "
                f"{len(patterns)} patterns, {len(coordinations)} coordination incidents, "
                f"{len(profiles)} profiles"
            )
            return result

    def _detect(
        self,
        events: list[ViolationEvent],
        histories: dict[str, UserRiskHistory | None],
        now: datetime,
    ) -> tuple[list[TrendPattern], list[CoordinationAnalysis], dict[str, UserTrendProfile]]:
        patterns: list[TrendPattern] = []
        patterns += self._guarded(
            "repeat_offenders", lambda: detect_repeat_offenders(events, now, self.policy), []
        )
        patterns += self._guarded(
            "suspicious_timing", lambda: detect_suspicious_timing(events, now, self.policy), []
        )
        patterns += self._guarded(
            "network_anomalies", lambda: detect_network_anomalies(events, now, self.policy), []
        )

        coordinations = self._guarded(
            "coordination",
            lambda: detect_coordinated_cheating(events, self.policy, self.signals, now),
            [],
        )

        profiles: dict[str, UserTrendProfile] = {}
        for user_id, user_events in sorted(group_by_user(events).items()):
            profile = self._guarded(
                f"profile:{user_id}",
                lambda: analyze_user_trends(
                    user_id, user_events, now, self.policy, histories.get(user_id)
                ),
                None,
            )
            if profile is not None:
                profiles[user_id] = profile

        return patterns, coordinations, profiles

    def _guarded(self, name: str, detector: Callable[[], T], default: T) -> T:
        try:
            return detector()
        except Exception:
            logger.exception(f"Trend detector '{name}' failed")
            return default

    def _upsert(self, store: dict[Hashable, Finding], key: Hashable, finding: Finding) -> Finding:
        """Store a finding, keeping the id and first detection time of an earlier match."""
        existing = store.pop(key, None)
        if existing is not None:
            finding = finding.model_copy(
                update={"id": existing.id, "detected_at": existing.detected_at}
            )
        store[key] = finding
        while len(store) > self.capacity:
            store.pop(next(iter(store)))
        return finding

    # ── Queries ──

    def get_trend_patterns(self, within: timedelta | None = None) -> list[TrendPattern]:
        patterns = list(self._patterns.values())
        if within is None:
            return patterns
        cutoff = datetime.now(timezone.utc) - within
        return [p for p in patterns if p.detected_at >= cutoff]

    def get_coordination_analyses(
        self, within: timedelta | None = None
    ) -> list[CoordinationAnalysis]:
        analyses = list(self._coordinations.values())
        if within is None:
            return analyses
        cutoff = datetime.now(timezone.utc) - within
        return [a for a in analyses if a.detected_at >= cutoff]

    def get_user_profile(self, user_id: str) -> UserTrendProfile | None:
        return self._profiles.get(user_id)

    def export_analysis_data(self) -> dict[str, Any]:
        """Everything the service currently holds, as JSON-ready data."""
        last = self._last_result
        return {
            "patterns": [p.model_dump(mode="json") for p in self._patterns.values()],
            "coordination_analyses": [
                c.model_dump(mode="json") for c in self._coordinations.values()
            ],
            "user_profiles": {
                uid: p.model_dump(mode="json") for uid, p in self._profiles.items()
            },
            "policy": self.policy.model_dump(mode="json"),
            "last_analysis": last.generated_at.isoformat() if last else None,
        }

    def prune(self, now: datetime | None = None, retention_days: float | None = None) -> int:
        """Drop findings whose covered events ended before the retention window."""
        days = retention_days if retention_days is not None else settings.pattern_retention_days
        cutoff = (assume_utc(now) if now else datetime.now(timezone.utc)) - timedelta(days=days)

        before = len(self._patterns) + len(self._coordinations)
        self._patterns = {
            k: p for k, p in self._patterns.items() if p.time_window.end > cutoff
        }
        self._coordinations = {
            k: c for k, c in self._coordinations.items() if c.time_window.end > cutoff
        }
        self._profiles = {
            uid: p for uid, p in self._profiles.items() if p.updated_at > cutoff
        }
        removed = before - len(self._patterns) - len(self._coordinations)
        if removed:
            logger.info(f"Pruned {removed} trend results older than {days:g} days")
        return removed

    # ── Scheduling ──

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run_periodically())
            logger.info(f"Trend analysis scheduled every {self.interval_seconds / 60:g} minutes")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_analysis()
            except Exception:
                logger.exception("Periodic trend analysis failed")
