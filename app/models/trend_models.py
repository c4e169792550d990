"""
Trend Data Models — Cross-event patterns and coordination clusters.

Produced by the trend analyzer, consumed by reporting. Never mutated.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.models.score_models import RiskLevel, TrendDirection


class PatternType(str, Enum):
    REPEAT_OFFENDER = "repeat_offender"
    COORDINATED_CHEATING = "coordinated_cheating"
    SUSPICIOUS_TIMING = "suspicious_timing"
    BEHAVIORAL_ANOMALY = "behavioral_anomaly"
    NETWORK_ANOMALY = "network_anomaly"


class CoordinationType(str, Enum):
    SIMULTANEOUS_VIOLATIONS = "simultaneous_violations"
    PATTERN_SHARING = "pattern_sharing"
    COMMUNICATION_SUSPICION = "communication_suspicion"
    DEVICE_SHARING = "device_sharing"


class TimeWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class StatisticalData(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: float = 0.0
    average_severity: float = 0.0
    trend_direction: TrendDirection = TrendDirection.STABLE
    correlation_coefficient: float = 0.0


class TrendPattern(BaseModel):
    """A detected behavioural pattern across one or more users."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: PatternType
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: RiskLevel
    description: str = ""
    indicators: list[str] = Field(default_factory=list)
    affected_users: list[str] = Field(default_factory=list)
    time_window: TimeWindow
    statistical_data: StatisticalData = Field(default_factory=StatisticalData)
    recommendations: list[str] = Field(default_factory=list)
    detected_at: datetime


class CoordinationEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    timing_correlation: float = Field(..., ge=0.0, le=1.0)
    pattern_similarity: float = Field(..., ge=0.0, le=1.0)
    network_correlation: float = Field(..., ge=0.0, le=1.0)
    behavioral_similarity: float = Field(..., ge=0.0, le=1.0)


class CoordinationAnalysis(BaseModel):
    """One suspected cluster of coordinated violations inside a time window."""

    model_config = ConfigDict(frozen=True)

    id: str
    involved_users: list[str] = Field(..., min_length=2)
    coordination_type: CoordinationType
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: CoordinationEvidence
    time_window: TimeWindow
    severity: RiskLevel
    recommendations: list[str] = Field(default_factory=list)
    detected_at: datetime


class UserTrendProfile(BaseModel):
    """Longitudinal violation profile of one user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    risk_score: float = Field(default=0.0, ge=0.0, le=100.0)
    total_violations: int = 0
    violation_types: dict[str, int] = Field(default_factory=dict)
    average_severity: float = 0.0
    last_violation: datetime | None = None
    violations_per_day: float = 0.0
    common_hours: list[int] = Field(default_factory=list)
    common_weekdays: list[int] = Field(default_factory=list)
    network_patterns: list[str] = Field(default_factory=list)
    is_repeat_offender: bool = False
    history_risk_profile: str | None = None
    updated_at: datetime


class TrendAnalysisResult(BaseModel):
    """Output of one full analysis pass."""

    patterns: list[TrendPattern] = Field(default_factory=list)
    coordination_analyses: list[CoordinationAnalysis] = Field(default_factory=list)
    user_profiles: dict[str, UserTrendProfile] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    events_analyzed: int = 0
    analysis_coverage: float = 0.0
    processing_time_ms: float = 0.0
    generated_at: datetime
