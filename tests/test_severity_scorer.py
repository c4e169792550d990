"""
Tests for Severity Scorer — verify the score formula, classification and explainability.
"""

from datetime import timedelta

import pytest

from app.core.risk_history import summarize_history
from app.core.severity_scorer import (
    calculate_escalation_score,
    compute_severity_score,
    determine_risk_level,
)
from app.models.policy_models import ScoringPolicy
from app.models.score_models import RiskLevel
from app.models.violation_models import (
    EnvironmentContext,
    EventType,
    ExamContext,
    ScoringContext,
    Severity,
)


def _ctx(event, history=None, **overrides):
    return ScoringContext(
        event=event,
        user_history=history,
        current_time=overrides.pop("current_time", event.timestamp),
        **overrides,
    )


def test_first_offense_uses_base_weight_only(make_event):
    score = compute_severity_score(_ctx(make_event()))

    assert score.base_score == pytest.approx(15.0)
    assert score.context_score == pytest.approx(0.0)
    assert score.total_score == pytest.approx(15.0)
    assert score.risk_level == RiskLevel.LOW
    assert score.factors.context_factors == ["first_offense"]
    # No history and no adaptive threshold yet
    assert score.confidence == pytest.approx(0.8 * 0.9)


def test_score_is_deterministic(make_event, make_prior_score, base_time):
    history = summarize_history(
        "user-1", [make_prior_score(20, base_time - timedelta(minutes=2))]
    )
    ctx = _ctx(make_event(EventType.DEV_TOOLS, Severity.HIGH), history)

    first = compute_severity_score(ctx, adaptive_threshold=30.0)
    second = compute_severity_score(ctx, adaptive_threshold=30.0)

    assert first == second


def test_higher_severity_never_scores_lower(make_event):
    totals = [
        compute_severity_score(_ctx(make_event(EventType.COPY_PASTE, severity))).total_score
        for severity in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
    ]
    assert totals == sorted(totals)


def test_high_stakes_and_after_hours_raise_score(make_event):
    event = make_event(EventType.TAB_SWITCH, Severity.MEDIUM)
    plain = compute_severity_score(_ctx(event)).total_score
    high_stakes = compute_severity_score(
        _ctx(event, exam_context=ExamContext(is_high_stakes=True))
    )
    after_hours = compute_severity_score(
        _ctx(event, environment_context=EnvironmentContext(is_business_hours=False))
    )

    assert high_stakes.total_score == pytest.approx(plain * 1.3)
    assert "high_stakes_exam" in high_stakes.factors.context_factors
    assert after_hours.total_score == pytest.approx(plain * 1.2)
    assert "outside_business_hours" in after_hours.factors.context_factors


def test_recent_prior_violation_multiplies_by_rapid_factor(make_event, make_prior_score, base_time):
    history = summarize_history("user-1", [make_prior_score(20, base_time - timedelta(seconds=60))])
    score = compute_severity_score(_ctx(make_event(), history))

    # (15 base + 7.5 repeat offense) × 1.5 + (1 × 0.1 + 20 × 0.2)
    assert score.total_score == pytest.approx(22.5 * 1.5 + 4.1)
    assert "recent_violations" in score.factors.time_factors
    assert "repeat_offense" in score.factors.context_factors


def test_old_prior_violation_decays_hourly(make_event, make_prior_score, base_time):
    history = summarize_history("user-1", [make_prior_score(20, base_time - timedelta(hours=2))])
    score = compute_severity_score(_ctx(make_event(), history))

    assert score.total_score == pytest.approx(22.5 * 0.95**2 + 4.1)
    assert "hourly_decay" in score.factors.time_factors
    assert "recent_violations" not in score.factors.time_factors


def test_escalation_bonus_for_bursts(make_prior_score, base_time):
    policy = ScoringPolicy()
    three = summarize_history(
        "user-1",
        [make_prior_score(10, base_time - timedelta(minutes=m)) for m in (1, 2, 3)],
    )
    five_high = summarize_history(
        "user-1",
        [
            make_prior_score(55, base_time - timedelta(minutes=m), RiskLevel.HIGH)
            for m in (1, 2, 3, 4, 5)
        ],
    )
    stale = summarize_history(
        "user-1",
        [make_prior_score(10, base_time - timedelta(minutes=m)) for m in (20, 30, 40)],
    )

    assert calculate_escalation_score(three, base_time, policy) == 15
    assert calculate_escalation_score(five_high, base_time, policy) == 30 + 20
    assert calculate_escalation_score(stale, base_time, policy) == 0
    assert calculate_escalation_score(None, base_time, policy) == 0


def test_adaptive_threshold_nudges_and_floors_at_zero(make_event):
    ctx = _ctx(make_event())

    nudged = compute_severity_score(ctx, adaptive_threshold=100.0)
    floored = compute_severity_score(ctx, adaptive_threshold=1_000.0)

    assert nudged.total_score == pytest.approx(15 + (15 - 100) * 0.1)
    assert floored.total_score == 0.0
    assert "user-1_tab_switch" in nudged.adaptive_adjustments


def test_adaptive_disabled_ignores_threshold(make_event):
    policy = ScoringPolicy()
    policy.adaptive.enabled = False

    score = compute_severity_score(_ctx(make_event()), adaptive_threshold=100.0, policy=policy)

    assert score.total_score == pytest.approx(15.0)
    assert score.adaptive_adjustments == {}


def test_risk_level_boundaries():
    assert determine_risk_level(0) == RiskLevel.LOW
    assert determine_risk_level(24.99) == RiskLevel.LOW
    assert determine_risk_level(25) == RiskLevel.MEDIUM
    assert determine_risk_level(49.99) == RiskLevel.MEDIUM
    assert determine_risk_level(50) == RiskLevel.HIGH
    assert determine_risk_level(74.99) == RiskLevel.HIGH
    assert determine_risk_level(75) == RiskLevel.CRITICAL


def test_confidence_drops_near_a_cutoff(make_event):
    # Custom weight lands exactly on the medium cutoff
    policy = ScoringPolicy()
    policy.base_weights[EventType.RIGHT_CLICK] = 25
    score = compute_severity_score(_ctx(make_event(EventType.RIGHT_CLICK)), policy=policy)

    assert score.total_score == pytest.approx(25.0)
    assert score.confidence == pytest.approx(0.8 * 0.9 * 0.95)


def test_critical_breach_in_final_minutes_of_high_stakes_exam(make_event):
    event = make_event(EventType.SECURE_COMM_BREACH, Severity.CRITICAL)
    ctx = _ctx(event, exam_context=ExamContext(is_high_stakes=True, time_remaining_seconds=120))

    score = compute_severity_score(ctx)

    # 50 × 1.6 base, +30% high stakes
    assert score.total_score == pytest.approx(104.0)
    assert score.risk_level == RiskLevel.CRITICAL
    assert score.penalty_weight == pytest.approx(3.0 * 1.2 * 1.3)
    assert "Immediately terminate exam session" in score.recommended_actions
    assert "Consider allowing exam completion with penalty" in score.recommended_actions
    assert "near_exam_end" in score.factors.time_factors


def test_repeated_same_type_flags_pattern(make_event, make_prior_score, base_time):
    history = summarize_history(
        "user-1",
        [make_prior_score(10, base_time - timedelta(hours=h)) for h in (5, 4, 3)],
    )
    score = compute_severity_score(_ctx(make_event(), history))

    assert "pattern_detected" in score.factors.context_factors
    assert "Investigate for coordinated cheating" in score.recommended_actions


def test_late_question_in_final_minutes_is_suspicious_timing(make_event):
    late = ExamContext(time_remaining_seconds=400, question_number=9, total_questions=10)

    score = compute_severity_score(_ctx(make_event(), exam_context=late))

    # 15 base, +40% suspicious timing
    assert "suspicious_timing" in score.factors.context_factors
    assert score.context_score == pytest.approx(6.0)
    assert score.total_score == pytest.approx(21.0)


@pytest.mark.parametrize(
    "exam",
    [
        ExamContext(time_remaining_seconds=400, question_number=5, total_questions=10),
        ExamContext(time_remaining_seconds=1200, question_number=9, total_questions=10),
        ExamContext(time_remaining_seconds=400, question_number=0, total_questions=0),
    ],
)
def test_timing_needs_both_final_minutes_and_late_question(make_event, exam):
    score = compute_severity_score(_ctx(make_event(), exam_context=exam))

    assert "suspicious_timing" not in score.factors.context_factors
    assert score.total_score == pytest.approx(15.0)


def test_rising_risk_levels_flag_pattern(make_event, make_prior_score, base_time):
    levels = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]
    history = summarize_history(
        "user-1",
        [
            make_prior_score(10 + 20 * i, base_time - timedelta(hours=5 - i), level, "dev_tools")
            for i, level in enumerate(levels)
        ],
    )

    score = compute_severity_score(_ctx(make_event(EventType.TAB_SWITCH), history))

    assert "pattern_detected" in score.factors.context_factors
    assert "Investigate for coordinated cheating" in score.recommended_actions


def test_flat_risk_levels_of_another_type_are_not_a_pattern(make_event, make_prior_score, base_time):
    history = summarize_history(
        "user-1",
        [
            make_prior_score(10, base_time - timedelta(hours=5 - i), RiskLevel.LOW, "dev_tools")
            for i in range(4)
        ],
    )

    score = compute_severity_score(_ctx(make_event(EventType.TAB_SWITCH), history))

    assert "pattern_detected" not in score.factors.context_factors
