"""
Policy Models — Tunable constants for scoring, trend detection and escalation.

The numbers are heuristic defaults, not derived values. Every table can be
replaced at construction time by passing a modified policy object.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.models.score_models import RiskLevel
from app.models.violation_models import EventType, Severity


DEFAULT_BASE_WEIGHTS: dict[EventType, float] = {
    EventType.TAB_SWITCH: 15,
    EventType.WINDOW_BLUR: 10,
    EventType.FULLSCREEN_EXIT: 25,
    EventType.COPY_PASTE: 20,
    EventType.RIGHT_CLICK: 5,
    EventType.DEV_TOOLS: 30,
    EventType.SCREENSHOT: 10,
    EventType.SCREEN_RECORDING: 40,
    EventType.NETWORK_VIOLATION: 35,
    EventType.CLIPBOARD_OPERATION: 15,
    EventType.DEBUG_ATTEMPT: 25,
    EventType.SECURE_COMM_BREACH: 50,
    EventType.MOUSE_ANOMALY: 20,
    EventType.KEYSTROKE_ANOMALY: 25,
    EventType.GAZE_ANOMALY: 30,
    EventType.TIME_PATTERN_ANOMALY: 20,
    EventType.BEHAVIOR_ANOMALY: 25,
    EventType.COORDINATED_CHEATING: 60,
}


class ContextMultipliers(BaseModel):
    first_offense: float = 1.0
    repeat_offense: float = 1.5
    high_stakes: float = 1.3
    outside_business_hours: float = 1.2
    suspicious_timing: float = 1.4
    pattern_detected: float = 1.6


class RiskThresholds(BaseModel):
    """Score cutoffs. A score at or above a cutoff belongs to that level."""

    low: float = 10
    medium: float = 25
    high: float = 50
    critical: float = 75

    def boundaries(self) -> tuple[float, ...]:
        return (self.low, self.medium, self.high, self.critical)


class TimeDecayFactors(BaseModel):
    recent_window_seconds: float = 300
    recent_violation: float = Field(
        default=1.5, description="Multiplier when a prior score is inside the recent window"
    )
    hourly: float = Field(default=0.95, description="Decay per hour since the last score")


class UserRiskFactors(BaseModel):
    previous_violations: float = 0.1
    average_score: float = 0.2


class EscalationBonuses(BaseModel):
    rapid_window_seconds: float = 600
    rapid_min_violations: int = 3
    rapid_bonus: float = 15
    burst_min_violations: int = 5
    burst_bonus: float = 30
    high_severity_min: int = 2
    high_severity_bonus: float = 20


class AdaptiveThresholdPolicy(BaseModel):
    enabled: bool = True
    adaptation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    minimum: float = 5
    maximum: float = 100
    nudge: float = Field(
        default=0.1, description="Fraction of (score - threshold) added to the score"
    )


class PenaltyPolicy(BaseModel):
    weights: dict[RiskLevel, float] = Field(
        default_factory=lambda: {
            RiskLevel.LOW: 1.0,
            RiskLevel.MEDIUM: 1.5,
            RiskLevel.HIGH: 2.0,
            RiskLevel.CRITICAL: 3.0,
        }
    )
    high_stakes_multiplier: float = 1.2
    final_minutes_seconds: float = 300
    final_minutes_multiplier: float = 1.3


class ConfidencePolicy(BaseModel):
    min_history: int = 3
    limited_history_discount: float = 0.8
    no_threshold_discount: float = 0.9
    boundary_band: float = Field(
        default=0.05, description="Relative distance to a cutoff treated as ambiguous"
    )
    boundary_discount: float = 0.95
    floor: float = 0.1


class TimingPolicy(BaseModel):
    final_window_seconds: float = 600
    final_question_fraction: float = 0.8
    cluster_window_seconds: float = 120
    cluster_min_violations: int = 2
    pattern_min_same_type: int = 3
    pattern_run_length: int = 5
    pattern_min_increases: int = 3


class ScoringPolicy(BaseModel):
    """Full scoring configuration."""

    base_weights: dict[EventType, float] = Field(
        default_factory=lambda: dict(DEFAULT_BASE_WEIGHTS)
    )
    default_base_weight: float = 10
    severity_multipliers: dict[Severity, float] = Field(
        default_factory=lambda: {
            Severity.LOW: 0.7,
            Severity.MEDIUM: 1.0,
            Severity.HIGH: 1.3,
            Severity.CRITICAL: 1.6,
        }
    )
    context_multipliers: ContextMultipliers = Field(default_factory=ContextMultipliers)
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    time_decay: TimeDecayFactors = Field(default_factory=TimeDecayFactors)
    user_risk: UserRiskFactors = Field(default_factory=UserRiskFactors)
    escalation: EscalationBonuses = Field(default_factory=EscalationBonuses)
    adaptive: AdaptiveThresholdPolicy = Field(default_factory=AdaptiveThresholdPolicy)
    penalty: PenaltyPolicy = Field(default_factory=PenaltyPolicy)
    confidence: ConfidencePolicy = Field(default_factory=ConfidencePolicy)
    timing: TimingPolicy = Field(default_factory=TimingPolicy)
    calculation_version: str = "1.0.0"


class RepeatOffenderPolicy(BaseModel):
    window_days: float = 7
    min_violations: int = 3
    min_average_severity: float = Field(
        default=3.0, description="Threshold on the 1-4 severity rank scale"
    )
    fast_gap_seconds: float = 86_400
    slow_gap_seconds: float = 7 * 86_400


class CoordinationPolicy(BaseModel):
    window_seconds: float = 300
    min_users: int = 2
    confidence_threshold: float = 0.7
    timing_weight: float = 0.3
    pattern_weight: float = 0.3
    network_weight: float = 0.2
    behavioral_weight: float = 0.2
    neutral_signal: float = 0.5
    pattern_sharing_threshold: float = 0.8
    device_sharing_threshold: float = 0.7


class SuspiciousTimingPolicy(BaseModel):
    cluster_min_violations: int = 3
    window_seconds: float = 600


class NetworkAnomalyPolicy(BaseModel):
    min_events: int = 2


class TrendPolicy(BaseModel):
    repeat_offender: RepeatOffenderPolicy = Field(default_factory=RepeatOffenderPolicy)
    coordination: CoordinationPolicy = Field(default_factory=CoordinationPolicy)
    suspicious_timing: SuspiciousTimingPolicy = Field(default_factory=SuspiciousTimingPolicy)
    network_anomaly: NetworkAnomalyPolicy = Field(default_factory=NetworkAnomalyPolicy)
    profile_window_days: float = 7
    pattern_store_capacity: int = 5_000


class EscalationPolicy(BaseModel):
    enabled: bool = True
    critical_score: float = 80
    high_score: float = 60
    high_risk_types: frozenset[EventType] = frozenset(
        {
            EventType.SECURE_COMM_BREACH,
            EventType.COORDINATED_CHEATING,
            EventType.SCREEN_RECORDING,
            EventType.DEV_TOOLS,
        }
    )
    generate_incident_reports: bool = True
    reports_enabled: bool = True
    report_min_violations: int = 3
    report_window_minutes: float = 30
    report_lookback_minutes: float = 60
    incident_template: str = "incident_report"
    summary_template: str = "violation_summary"
    incident_recipients: list[str] = Field(
        default_factory=lambda: ["security_team", "academic_integrity_officer"]
    )
    summary_recipients: list[str] = Field(
        default_factory=lambda: ["exam_coordinator", "instructor"]
    )
