"""
Score Data Models — Per-event severity scores and per-user risk history.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RISK_LEVEL_RANKS: dict[RiskLevel, int] = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class RiskProfile(str, Enum):
    LOW_RISK = "low_risk"
    MODERATE_RISK = "moderate_risk"
    HIGH_RISK = "high_risk"
    CRITICAL_RISK = "critical_risk"


class ScoreFactors(BaseModel):
    """Which situational factors fired while computing a score."""

    model_config = ConfigDict(frozen=True)

    violation_type: str
    context_factors: list[str] = Field(default_factory=list)
    time_factors: list[str] = Field(default_factory=list)
    user_factors: list[str] = Field(default_factory=list)


class SeverityScore(BaseModel):
    """Explainable risk score for one violation event. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    user_id: str
    total_score: float = Field(..., ge=0)
    base_score: float = 0.0
    context_score: float = 0.0
    escalation_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    penalty_weight: float = 1.0
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    recommended_actions: list[str] = Field(default_factory=list)
    factors: ScoreFactors
    calculated_at: datetime
    calculation_version: str = "1.0.0"
    adaptive_adjustments: dict[str, float] = Field(default_factory=dict)


class UserRiskHistory(BaseModel):
    """Snapshot of a user's bounded score log plus derived aggregates."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    scores: list[SeverityScore] = Field(default_factory=list)
    last_calculated: datetime | None = None
    average_score: float = 0.0
    trend_direction: TrendDirection = TrendDirection.STABLE
    risk_profile: RiskProfile = RiskProfile.LOW_RISK

    @property
    def violation_count(self) -> int:
        return len(self.scores)
