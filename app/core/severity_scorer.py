"""
Severity Scoring Engine — Computes explainable risk scores for violation events.

total = ((base + context) × time_factor + user_risk) + escalation, then nudged
toward the user's adaptive threshold for this event type.

    base       = base_weight[event_type] × severity_multiplier[severity]
    context    = Σ base × (multiplier − 1) over the context conditions that apply
    time       = ×1.5 if a prior score is under 5 minutes old, else 0.95^hours
    user_risk  = prior_count × 0.1 + average_score × 0.2
    escalation = +15 / +30 for 3 / 5 violations in 10 minutes, +20 for ≥2 high scores
    adaptive   = max(0, total + (total − threshold) × 0.1)

The calculation is a pure function of the scoring context, the current
adaptive threshold and the policy. It never reads a clock.
"""

from __future__ import annotations

from datetime import datetime

from app.cache.ttl_cache import next_adaptive_threshold, threshold_key_label
from app.models.policy_models import ScoringPolicy
from app.models.score_models import (
    RISK_LEVEL_RANKS,
    RiskLevel,
    RiskProfile,
    ScoreFactors,
    SeverityScore,
    TrendDirection,
    UserRiskHistory,
)
from app.models.violation_models import ScoringContext, ViolationEvent

DEFAULT_POLICY = ScoringPolicy()

# Score returned when the calculation itself fails
FALLBACK_TOTAL_SCORE = 5.0
FALLBACK_CONFIDENCE = 0.5

RISK_LEVEL_ACTIONS: dict[RiskLevel, list[str]] = {
    RiskLevel.LOW: [
        "Log violation for review",
        "Send warning notification to user",
    ],
    RiskLevel.MEDIUM: [
        "Log violation with detailed context",
        "Send warning notification to user",
        "Flag user for additional monitoring",
    ],
    RiskLevel.HIGH: [
        "Log violation with evidence collection",
        "Send stern warning to user",
        "Notify exam proctor/administrator",
        "Consider temporary suspension of exam privileges",
    ],
    RiskLevel.CRITICAL: [
        "Log violation with comprehensive evidence",
        "Immediately terminate exam session",
        "Notify all relevant administrators",
        "Flag user account for review",
        "Generate incident report",
    ],
}


def compute_severity_score(
    ctx: ScoringContext,
    adaptive_threshold: float | None = None,
    policy: ScoringPolicy | None = None,
) -> SeverityScore:
    """
    Compute the severity score for one violation.

    Args:
        ctx: Event plus read-only history snapshot and exam/environment context.
        adaptive_threshold: Current tracked level for (user, event type), if any.
        policy: Scoring constants. Defaults to the stock policy.

    Returns:
        A frozen SeverityScore. adaptive_adjustments carries the threshold the
        caller should store after accepting this score.
    """
    policy = policy or DEFAULT_POLICY
    event = ctx.event
    history = ctx.user_history
    now = ctx.current_time

    # ── Step 1: Base score ──
    base_score = calculate_base_score(event, policy)

    # ── Step 2: Context score ──
    context_score, context_factors, pattern_found = _context_score(ctx, base_score, policy)

    # ── Step 3: Time decay ──
    time_factor, time_factors = _time_factor(ctx, policy)
    running = (base_score + context_score) * time_factor

    # ── Step 4: User risk factor ──
    running += _user_risk(history, policy)
    user_factors = _user_factors(history)

    # ── Step 5: Escalation score ──
    escalation_score = calculate_escalation_score(history, now, policy)
    total = running + escalation_score

    # ── Step 6: Adaptive adjustment ──
    adaptive_adjustments: dict[str, float] = {}
    if policy.adaptive.enabled:
        if adaptive_threshold is not None:
            total = max(0.0, total + (total - adaptive_threshold) * policy.adaptive.nudge)
        key = threshold_key_label((event.user_id, event.event_type))
        adaptive_adjustments[key] = next_adaptive_threshold(
            adaptive_threshold, total, policy.adaptive
        )
    total = max(0.0, total)

    # ── Step 7–9: Classification, penalty, confidence ──
    risk_level = determine_risk_level(total, policy)
    penalty_weight = calculate_penalty_weight(risk_level, ctx, policy)
    confidence = calculate_confidence(total, ctx, adaptive_threshold, policy)
    actions = recommend_actions(risk_level, ctx, pattern_found, policy)

    return SeverityScore(
        event_id=event.id,
        user_id=event.user_id,
        total_score=total,
        base_score=base_score,
        context_score=context_score,
        escalation_score=escalation_score,
        risk_level=risk_level,
        penalty_weight=penalty_weight,
        confidence=confidence,
        recommended_actions=actions,
        factors=ScoreFactors(
            violation_type=event.event_type.value,
            context_factors=context_factors,
            time_factors=time_factors,
            user_factors=user_factors,
        ),
        calculated_at=now,
        calculation_version=policy.calculation_version,
        adaptive_adjustments=adaptive_adjustments,
    )


def conservative_default_score(event: ViolationEvent, now: datetime) -> SeverityScore:
    """Low-risk placeholder used when scoring fails."""
    return SeverityScore(
        event_id=event.id,
        user_id=event.user_id,
        total_score=FALLBACK_TOTAL_SCORE,
        risk_level=RiskLevel.LOW,
        confidence=FALLBACK_CONFIDENCE,
        recommended_actions=list(RISK_LEVEL_ACTIONS[RiskLevel.LOW]),
        factors=ScoreFactors(
            violation_type=event.event_type.value,
            context_factors=["calculation_failed"],
        ),
        calculated_at=now,
    )


def calculate_base_score(event: ViolationEvent, policy: ScoringPolicy) -> float:
    weight = policy.base_weights.get(event.event_type, policy.default_base_weight)
    return weight * policy.severity_multipliers.get(event.severity, 1.0)


def determine_risk_level(total_score: float, policy: ScoringPolicy | None = None) -> RiskLevel:
    """Map a score to a risk level. Cutoffs are inclusive lower bounds."""
    thresholds = (policy or DEFAULT_POLICY).thresholds
    if total_score >= thresholds.critical:
        return RiskLevel.CRITICAL
    if total_score >= thresholds.high:
        return RiskLevel.HIGH
    if total_score >= thresholds.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def calculate_escalation_score(
    history: UserRiskHistory | None,
    now: datetime,
    policy: ScoringPolicy,
) -> float:
    if history is None:
        return 0.0

    bonuses = policy.escalation
    recent = _scores_within(history, now, bonuses.rapid_window_seconds)

    score = 0.0
    if len(recent) >= bonuses.burst_min_violations:
        score += bonuses.burst_bonus
    elif len(recent) >= bonuses.rapid_min_violations:
        score += bonuses.rapid_bonus

    high_count = sum(
        1 for s in recent if s.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    )
    if high_count >= bonuses.high_severity_min:
        score += bonuses.high_severity_bonus

    return score


def calculate_penalty_weight(
    risk_level: RiskLevel,
    ctx: ScoringContext,
    policy: ScoringPolicy,
) -> float:
    penalty = policy.penalty
    weight = penalty.weights.get(risk_level, 1.0)
    if ctx.exam_context.is_high_stakes:
        weight *= penalty.high_stakes_multiplier
    if ctx.exam_context.time_remaining_seconds < penalty.final_minutes_seconds:
        weight *= penalty.final_minutes_multiplier
    return weight


def calculate_confidence(
    total_score: float,
    ctx: ScoringContext,
    adaptive_threshold: float | None,
    policy: ScoringPolicy,
) -> float:
    rules = policy.confidence
    confidence = 1.0

    history = ctx.user_history
    if history is None or history.violation_count < rules.min_history:
        confidence *= rules.limited_history_discount

    if adaptive_threshold is None:
        confidence *= rules.no_threshold_discount

    # Ambiguous classification near a cutoff
    for boundary in policy.thresholds.boundaries():
        if boundary > 0 and abs(total_score - boundary) <= boundary * rules.boundary_band:
            confidence *= rules.boundary_discount
            break

    return max(rules.floor, confidence)


def recommend_actions(
    risk_level: RiskLevel,
    ctx: ScoringContext,
    pattern_found: bool,
    policy: ScoringPolicy,
) -> list[str]:
    actions = list(RISK_LEVEL_ACTIONS[risk_level])
    if ctx.exam_context.time_remaining_seconds < policy.timing.final_window_seconds:
        actions.append("Consider allowing exam completion with penalty")
    if pattern_found:
        actions.append("Investigate for coordinated cheating")
    return actions


def is_suspicious_timing(ctx: ScoringContext, policy: ScoringPolicy) -> bool:
    """Late in the exam and late in the paper, or clustered with recent violations."""
    timing = policy.timing
    exam = ctx.exam_context
    if (
        exam.time_remaining_seconds < timing.final_window_seconds
        and exam.question_progress > timing.final_question_fraction
    ):
        return True

    if ctx.user_history is not None:
        clustered = _scores_within(ctx.user_history, ctx.current_time, timing.cluster_window_seconds)
        if len(clustered) >= timing.cluster_min_violations:
            return True

    return False


def detects_pattern(ctx: ScoringContext, policy: ScoringPolicy) -> bool:
    """Repeated identical violation type, or a run of rising risk levels."""
    timing = policy.timing
    history = ctx.user_history
    if history is None or history.violation_count < timing.pattern_min_same_type:
        return False

    event_type = ctx.event.event_type.value
    same_type = sum(1 for s in history.scores if s.factors.violation_type == event_type)
    if same_type >= timing.pattern_min_same_type:
        return True

    levels = [RISK_LEVEL_RANKS[s.risk_level] for s in history.scores[-timing.pattern_run_length:]]
    increases = sum(1 for prev, cur in zip(levels, levels[1:]) if cur > prev)
    return increases >= timing.pattern_min_increases


def _context_score(
    ctx: ScoringContext,
    base_score: float,
    policy: ScoringPolicy,
) -> tuple[float, list[str], bool]:
    multipliers = policy.context_multipliers
    history = ctx.user_history
    factors: list[str] = []
    score = 0.0

    if history is None or history.violation_count == 0:
        score += base_score * (multipliers.first_offense - 1)
        factors.append("first_offense")
    else:
        score += base_score * (multipliers.repeat_offense - 1)
        factors.append("repeat_offense")

    if ctx.exam_context.is_high_stakes:
        score += base_score * (multipliers.high_stakes - 1)
        factors.append("high_stakes_exam")

    if not ctx.environment_context.is_business_hours:
        score += base_score * (multipliers.outside_business_hours - 1)
        factors.append("outside_business_hours")

    if is_suspicious_timing(ctx, policy):
        score += base_score * (multipliers.suspicious_timing - 1)
        factors.append("suspicious_timing")

    pattern_found = detects_pattern(ctx, policy)
    if pattern_found:
        score += base_score * (multipliers.pattern_detected - 1)
        factors.append("pattern_detected")

    # Informational only
    if ctx.environment_context.network_quality == "poor":
        factors.append("poor_network_quality")
    if ctx.environment_context.device_type == "mobile":
        factors.append("mobile_device")

    return score, factors, pattern_found


def _time_factor(ctx: ScoringContext, policy: ScoringPolicy) -> tuple[float, list[str]]:
    decay = policy.time_decay
    history = ctx.user_history
    factors: list[str] = []
    multiplier = 1.0

    if history is not None and history.violation_count > 0:
        if _scores_within(history, ctx.current_time, decay.recent_window_seconds):
            multiplier = decay.recent_violation
            factors.append("recent_violations")
        elif history.last_calculated is not None:
            hours = max(0.0, (ctx.current_time - history.last_calculated).total_seconds() / 3600)
            multiplier = decay.hourly**hours
            factors.append("hourly_decay")

    if ctx.exam_context.time_remaining_seconds < policy.penalty.final_minutes_seconds:
        factors.append("near_exam_end")

    return multiplier, factors


def _user_risk(history: UserRiskHistory | None, policy: ScoringPolicy) -> float:
    if history is None:
        return 0.0
    factors = policy.user_risk
    return history.violation_count * factors.previous_violations + history.average_score * factors.average_score


def _user_factors(history: UserRiskHistory | None) -> list[str]:
    if history is None:
        return []
    factors: list[str] = []
    if history.violation_count > 5:
        factors.append("frequent_offender")
    if history.risk_profile in (RiskProfile.HIGH_RISK, RiskProfile.CRITICAL_RISK):
        factors.append("high_risk_profile")
    if history.trend_direction == TrendDirection.INCREASING:
        factors.append("increasing_trend")
    return factors


def _scores_within(
    history: UserRiskHistory,
    now: datetime,
    window_seconds: float,
) -> list[SeverityScore]:
    """Prior scores calculated in [now - window, now]."""
    recent = []
    for s in history.scores:
        age = (now - s.calculated_at).total_seconds()
        if 0 <= age < window_seconds:
            recent.append(s)
    return recent
