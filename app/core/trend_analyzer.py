"""
Trend Analyzer — Deterministic detectors over a snapshot of violation events.

Detectors:
  - repeat offenders: per-user volume and severity inside a rolling window
  - coordinated cheating: multi-user clusters in fixed 5-minute windows
  - suspicious timing: per-user bursts of violations
  - network anomalies: users with repeated network-category violations

All statistics are explainable formulas (coefficient of variation, cosine
similarity, Pearson correlation). Detectors only read events.
"""

from __future__ import annotations

import math
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from app.integrations.collaborators import CoordinationSignalProvider
from app.models.policy_models import CoordinationPolicy, TrendPolicy
from app.models.score_models import RiskLevel, TrendDirection, UserRiskHistory
from app.models.trend_models import (
    CoordinationAnalysis,
    CoordinationEvidence,
    CoordinationType,
    PatternType,
    StatisticalData,
    TimeWindow,
    TrendAnalysisResult,
    TrendPattern,
    UserTrendProfile,
)
from app.models.violation_models import (
    EVENT_TYPE_INDEX,
    NETWORK_EVENT_TYPES,
    EventType,
    ViolationEvent,
)

DEFAULT_TREND_POLICY = TrendPolicy()

REPEAT_OFFENDER_RECOMMENDATIONS = [
    "Review user account for additional security measures",
    "Consider temporary suspension of exam privileges",
    "Notify academic integrity office",
    "Implement additional monitoring for this user",
]

COORDINATION_RECOMMENDATIONS = [
    "Investigate involved users for academic integrity violation",
    "Review exam session recordings for the time window",
    "Consider invalidating exam results for involved users",
    "Implement additional security measures for future exams",
    "Notify academic integrity office for formal investigation",
]


@dataclass
class EventWindow:
    """A run of chronologically adjacent events starting at `start`."""

    start: datetime
    end: datetime
    events: list[ViolationEvent] = field(default_factory=list)

    def by_user(self) -> dict[str, list[ViolationEvent]]:
        groups: dict[str, list[ViolationEvent]] = {}
        for event in self.events:
            groups.setdefault(event.user_id, []).append(event)
        return groups


# ── Statistics ──


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population std / mean. Zero mean with zero spread is perfectly regular (0.0)."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    std = math.sqrt(variance)
    if mean == 0:
        return 0.0 if std == 0 else math.inf
    return std / mean


def timing_correlation(events: Sequence[ViolationEvent]) -> float:
    """1 − CV of inter-arrival gaps, clamped to [0, 1]. Tight clusters score near 1."""
    timestamps = sorted(e.timestamp for e in events)
    gaps = [(b - a).total_seconds() for a, b in zip(timestamps, timestamps[1:])]
    if not gaps:
        return 0.0
    return max(0.0, min(1.0, 1.0 - coefficient_of_variation(gaps)))


def event_type_vector(events: Sequence[ViolationEvent]) -> list[float]:
    """Frequency of each event type, indexed in EventType declaration order."""
    vector = [0.0] * len(EVENT_TYPE_INDEX)
    for event in events:
        vector[EVENT_TYPE_INDEX[event.event_type]] += 1
    return vector


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def pattern_similarity(events_by_user: dict[str, list[ViolationEvent]]) -> float:
    """Mean pairwise cosine similarity of per-user event-type vectors."""
    vectors = [event_type_vector(events) for events in events_by_user.values()]
    if len(vectors) < 2:
        return 0.0
    similarities = [
        cosine_similarity(vectors[i], vectors[j])
        for i in range(len(vectors))
        for j in range(i + 1, len(vectors))
    ]
    return sum(similarities) / len(similarities)


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    n = len(x)
    sum_x, sum_y = sum(x), sum(y)
    sum_xy = sum(a * b for a, b in zip(x, y))
    sum_x2 = sum(a * a for a in x)
    sum_y2 = sum(b * b for b in y)
    numerator = n * sum_xy - sum_x * sum_y
    denominator = math.sqrt(max(0.0, (n * sum_x2 - sum_x**2) * (n * sum_y2 - sum_y**2)))
    if denominator == 0:
        return 0.0
    return numerator / denominator


def average_severity(events: Sequence[ViolationEvent]) -> float:
    if not events:
        return 0.0
    return sum(e.severity.rank for e in events) / len(events)


def group_by_user(events: Sequence[ViolationEvent]) -> dict[str, list[ViolationEvent]]:
    groups: dict[str, list[ViolationEvent]] = {}
    for event in events:
        groups.setdefault(event.user_id, []).append(event)
    return groups


# ── Repeat offenders ──


def detect_repeat_offenders(
    events: Sequence[ViolationEvent],
    now: datetime,
    policy: TrendPolicy | None = None,
) -> list[TrendPattern]:
    """One repeat_offender pattern per user over volume and severity thresholds."""
    rules = (policy or DEFAULT_TREND_POLICY).repeat_offender
    window_start = now - timedelta(days=rules.window_days)
    patterns: list[TrendPattern] = []

    for user_id, user_events in group_by_user(events).items():
        recent = sorted(
            (e for e in user_events if window_start < e.timestamp <= now),
            key=lambda e: e.timestamp,
        )
        if len(recent) < rules.min_violations:
            continue

        avg = average_severity(recent)
        if avg < rules.min_average_severity:
            continue

        fast = slow = 0
        for prev, cur in zip(recent, recent[1:]):
            gap = (cur.timestamp - prev.timestamp).total_seconds()
            if gap < rules.fast_gap_seconds:
                fast += 1
            elif gap > rules.slow_gap_seconds:
                slow += 1
        if fast > slow:
            direction = TrendDirection.INCREASING
        elif slow > fast:
            direction = TrendDirection.DECREASING
        else:
            direction = TrendDirection.STABLE

        correlation = pearson_correlation(
            [e.timestamp.timestamp() for e in recent],
            [float(e.severity.rank) for e in recent],
        )

        if avg > 3:
            severity = RiskLevel.HIGH
        elif avg > 2:
            severity = RiskLevel.MEDIUM
        else:
            severity = RiskLevel.LOW

        patterns.append(
            TrendPattern(
                id=f"repeat_offender_{user_id}_{uuid.uuid4().hex[:8]}",
                type=PatternType.REPEAT_OFFENDER,
                confidence=min(0.9, len(recent) / 10),
                severity=severity,
                description=(
                    f"User {user_id} identified as repeat offender with {len(recent)} "
                    f"violations in {rules.window_days:g} days"
                ),
                indicators=[
                    f"{len(recent)} violations in {rules.window_days:g} days",
                    f"Average severity: {avg:.1f}",
                    f"Trend: {direction.value}",
                ],
                affected_users=[user_id],
                time_window=TimeWindow(start=window_start, end=now),
                statistical_data=StatisticalData(
                    frequency=len(recent) / rules.window_days,
                    average_severity=avg,
                    trend_direction=direction,
                    correlation_coefficient=correlation,
                ),
                recommendations=list(REPEAT_OFFENDER_RECOMMENDATIONS),
                detected_at=now,
            )
        )

    return patterns


# ── Coordinated cheating ──


def create_time_windows(
    events: Sequence[ViolationEvent],
    window_seconds: float,
) -> list[EventWindow]:
    """
    Partition events chronologically into non-overlapping windows.

    Each window opens at its first event and closes window_seconds later;
    the first event past the close opens the next window.
    """
    ordered = sorted(events, key=lambda e: e.timestamp)
    if not ordered:
        return []

    size = timedelta(seconds=window_seconds)
    windows: list[EventWindow] = []
    current = EventWindow(start=ordered[0].timestamp, end=ordered[0].timestamp + size)

    for event in ordered:
        if event.timestamp <= current.end:
            current.events.append(event)
        else:
            windows.append(current)
            current = EventWindow(start=event.timestamp, end=event.timestamp + size, events=[event])

    windows.append(current)
    return windows


def _signal(value: float | None, neutral: float) -> float:
    if value is None:
        return neutral
    return max(0.0, min(1.0, value))


def analyze_window_coordination(
    window: EventWindow,
    policy: CoordinationPolicy,
    signals: CoordinationSignalProvider | None = None,
    detected_at: datetime | None = None,
) -> CoordinationAnalysis | None:
    """Score one window. Returns None unless confidence exceeds the threshold."""
    groups = window.by_user()
    if len(groups) < policy.min_users:
        return None

    timing = timing_correlation(window.events)
    pattern = pattern_similarity(groups)
    network = _signal(
        signals.network_correlation(window.events) if signals else None,
        policy.neutral_signal,
    )
    behavioral = _signal(
        signals.behavioral_similarity(groups) if signals else None,
        policy.neutral_signal,
    )

    confidence = (
        timing * policy.timing_weight
        + pattern * policy.pattern_weight
        + network * policy.network_weight
        + behavioral * policy.behavioral_weight
    )
    confidence = max(0.0, min(1.0, confidence))
    if confidence <= policy.confidence_threshold:
        return None

    if pattern > policy.pattern_sharing_threshold:
        coordination_type = CoordinationType.PATTERN_SHARING
    elif network > policy.device_sharing_threshold:
        coordination_type = CoordinationType.DEVICE_SHARING
    else:
        coordination_type = CoordinationType.SIMULTANEOUS_VIOLATIONS

    return CoordinationAnalysis(
        id=f"coordination_{uuid.uuid4().hex[:12]}",
        involved_users=sorted(groups),
        coordination_type=coordination_type,
        confidence=confidence,
        evidence=CoordinationEvidence(
            timing_correlation=timing,
            pattern_similarity=min(1.0, pattern),
            network_correlation=network,
            behavioral_similarity=behavioral,
        ),
        time_window=TimeWindow(start=window.start, end=window.end),
        severity=coordination_severity(confidence),
        recommendations=list(COORDINATION_RECOMMENDATIONS),
        detected_at=detected_at or window.end,
    )


def coordination_severity(confidence: float) -> RiskLevel:
    if confidence > 0.9:
        return RiskLevel.CRITICAL
    if confidence > 0.8:
        return RiskLevel.HIGH
    if confidence > 0.7:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def detect_coordinated_cheating(
    events: Sequence[ViolationEvent],
    policy: TrendPolicy | None = None,
    signals: CoordinationSignalProvider | None = None,
    detected_at: datetime | None = None,
) -> list[CoordinationAnalysis]:
    rules = (policy or DEFAULT_TREND_POLICY).coordination
    analyses = []
    for window in create_time_windows(events, rules.window_seconds):
        analysis = analyze_window_coordination(window, rules, signals, detected_at)
        if analysis is not None:
            analyses.append(analysis)
    return analyses


def coordination_to_pattern(analysis: CoordinationAnalysis) -> TrendPattern:
    evidence = analysis.evidence
    return TrendPattern(
        id=analysis.id,
        type=PatternType.COORDINATED_CHEATING,
        confidence=analysis.confidence,
        severity=analysis.severity,
        description=f"Coordinated cheating detected among {len(analysis.involved_users)} users",
        indicators=[
            f"Type: {analysis.coordination_type.value}",
            f"Users involved: {', '.join(analysis.involved_users)}",
            f"Timing correlation: {evidence.timing_correlation * 100:.1f}%",
            f"Pattern similarity: {evidence.pattern_similarity * 100:.1f}%",
        ],
        affected_users=list(analysis.involved_users),
        time_window=analysis.time_window,
        statistical_data=StatisticalData(
            frequency=len(analysis.involved_users),
            average_severity=analysis.confidence * 4,
            trend_direction=TrendDirection.STABLE,
            correlation_coefficient=evidence.timing_correlation,
        ),
        recommendations=list(analysis.recommendations),
        detected_at=analysis.detected_at,
    )


# ── Per-user bursts and network patterns ──


def detect_suspicious_timing(
    events: Sequence[ViolationEvent],
    now: datetime,
    policy: TrendPolicy | None = None,
) -> list[TrendPattern]:
    """Flag users whose violations cluster tightly, once per user at the densest burst."""
    rules = (policy or DEFAULT_TREND_POLICY).suspicious_timing
    span = timedelta(seconds=rules.window_seconds)
    patterns: list[TrendPattern] = []

    for user_id, user_events in group_by_user(events).items():
        ordered = sorted(user_events, key=lambda e: e.timestamp)
        best: list[ViolationEvent] = []
        lo = 0
        for hi, event in enumerate(ordered):
            while event.timestamp - ordered[lo].timestamp > span:
                lo += 1
            if hi - lo + 1 > len(best):
                best = ordered[lo : hi + 1]

        if len(best) < rules.cluster_min_violations:
            continue

        avg = average_severity(best)
        patterns.append(
            TrendPattern(
                id=f"suspicious_timing_{user_id}_{uuid.uuid4().hex[:8]}",
                type=PatternType.SUSPICIOUS_TIMING,
                confidence=min(0.9, len(best) / (rules.cluster_min_violations * 2)),
                severity=RiskLevel.HIGH if avg >= 3 else RiskLevel.MEDIUM,
                description=(
                    f"User {user_id} produced {len(best)} violations within "
                    f"{rules.window_seconds / 60:g} minutes"
                ),
                indicators=[f"{len(best)} violations clustered", f"Average severity: {avg:.1f}"],
                affected_users=[user_id],
                time_window=TimeWindow(start=best[0].timestamp, end=best[-1].timestamp),
                statistical_data=StatisticalData(
                    frequency=float(len(best)),
                    average_severity=avg,
                    trend_direction=TrendDirection.INCREASING,
                    correlation_coefficient=timing_correlation(best),
                ),
                recommendations=["Review session recording for the burst window"],
                detected_at=now,
            )
        )

    return patterns


def detect_network_anomalies(
    events: Sequence[ViolationEvent],
    now: datetime,
    policy: TrendPolicy | None = None,
) -> list[TrendPattern]:
    rules = (policy or DEFAULT_TREND_POLICY).network_anomaly
    patterns: list[TrendPattern] = []

    for user_id, user_events in group_by_user(events).items():
        network_events = sorted(
            (e for e in user_events if e.event_type in NETWORK_EVENT_TYPES),
            key=lambda e: e.timestamp,
        )
        if len(network_events) < rules.min_events:
            continue

        avg = average_severity(network_events)
        breach = any(e.event_type == EventType.SECURE_COMM_BREACH for e in network_events)
        patterns.append(
            TrendPattern(
                id=f"network_anomaly_{user_id}_{uuid.uuid4().hex[:8]}",
                type=PatternType.NETWORK_ANOMALY,
                confidence=min(0.9, len(network_events) / 5),
                severity=RiskLevel.CRITICAL if breach else RiskLevel.HIGH,
                description=f"User {user_id} has {len(network_events)} network security violations",
                indicators=sorted({e.event_type.value for e in network_events}),
                affected_users=[user_id],
                time_window=TimeWindow(
                    start=network_events[0].timestamp, end=network_events[-1].timestamp
                ),
                statistical_data=StatisticalData(
                    frequency=float(len(network_events)),
                    average_severity=avg,
                ),
                recommendations=["Inspect network traces captured for the session"],
                detected_at=now,
            )
        )

    return patterns


# ── Profiles and system recommendations ──


def analyze_user_trends(
    user_id: str,
    events: Sequence[ViolationEvent],
    now: datetime,
    policy: TrendPolicy | None = None,
    history: UserRiskHistory | None = None,
) -> UserTrendProfile:
    rules = policy or DEFAULT_TREND_POLICY
    window_days = rules.profile_window_days
    cutoff = now - timedelta(days=window_days)
    relevant = [e for e in events if e.user_id == user_id and e.timestamp > cutoff]

    per_day = len(relevant) / window_days if window_days else 0.0
    avg = average_severity(relevant)
    repeat = len(relevant) >= rules.repeat_offender.min_violations

    risk_score = per_day * 10 + avg * 5 + (25 if repeat else 0)

    return UserTrendProfile(
        user_id=user_id,
        risk_score=min(100.0, risk_score),
        total_violations=len(relevant),
        violation_types=dict(Counter(e.event_type.value for e in relevant)),
        average_severity=avg,
        last_violation=max((e.timestamp for e in relevant), default=None),
        violations_per_day=per_day,
        common_hours=_above_average_buckets([e.timestamp.hour for e in relevant], 24),
        common_weekdays=_above_average_buckets([e.timestamp.weekday() for e in relevant], 7),
        network_patterns=(
            ["network_security_issues"]
            if any(e.event_type in NETWORK_EVENT_TYPES for e in relevant)
            else []
        ),
        is_repeat_offender=repeat,
        history_risk_profile=history.risk_profile.value if history else None,
        updated_at=now,
    )


def _above_average_buckets(values: list[int], buckets: int) -> list[int]:
    counts = Counter(values)
    average = len(values) / buckets
    return [b for b in range(buckets) if counts.get(b, 0) > average]


def build_system_recommendations(result: TrendAnalysisResult) -> list[str]:
    recommendations: list[str] = []

    high_risk = [p for p in result.patterns if p.severity in (RiskLevel.HIGH, RiskLevel.CRITICAL)]
    if high_risk:
        recommendations.append(
            f"{len(high_risk)} high-risk patterns detected - immediate review required"
        )

    if result.coordination_analyses:
        recommendations.append(
            f"{len(result.coordination_analyses)} coordinated cheating incidents detected"
        )

    risky_users = [p for p in result.user_profiles.values() if p.risk_score > 70]
    if risky_users:
        recommendations.append(
            f"{len(risky_users)} users identified as high-risk - consider additional monitoring"
        )

    if result.processing_time_ms > 30_000:
        recommendations.append("Analysis performance is slow - consider optimizing algorithms")

    return recommendations
