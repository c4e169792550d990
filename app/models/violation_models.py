"""
Violation Data Models — Monitor-emitted events and the context they are scored in.

A ViolationEvent is an immutable fact produced by an external client-side
monitor. The engine only reads it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.score_models import UserRiskHistory


class EventType(str, Enum):
    """Closed set of violation kinds. Declaration order is the vector index order."""

    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    FULLSCREEN_EXIT = "fullscreen_exit"
    COPY_PASTE = "copy_paste"
    RIGHT_CLICK = "right_click"
    DEV_TOOLS = "dev_tools"
    SCREENSHOT = "screenshot"
    SCREEN_RECORDING = "screen_recording"
    NETWORK_VIOLATION = "network_violation"
    CLIPBOARD_OPERATION = "clipboard_operation"
    DEBUG_ATTEMPT = "debug_attempt"
    SECURE_COMM_BREACH = "secure_comm_breach"
    MOUSE_ANOMALY = "mouse_anomaly"
    KEYSTROKE_ANOMALY = "keystroke_anomaly"
    GAZE_ANOMALY = "gaze_anomaly"
    TIME_PATTERN_ANOMALY = "time_pattern_anomaly"
    BEHAVIOR_ANOMALY = "behavior_anomaly"
    COORDINATED_CHEATING = "coordinated_cheating"


EVENT_TYPE_INDEX: dict[EventType, int] = {t: i for i, t in enumerate(EventType)}

NETWORK_EVENT_TYPES: frozenset[EventType] = frozenset(
    {EventType.NETWORK_VIOLATION, EventType.SECURE_COMM_BREACH}
)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal on the 1-4 scale used by trend statistics."""
        return SEVERITY_RANKS[self]


def assume_utc(value: datetime) -> datetime:
    """Naive datetimes are read as UTC so every comparison is between aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


SEVERITY_RANKS: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class MonitorAction(str, Enum):
    WARN = "warn"
    LOG = "log"
    BLOCK = "block"
    TERMINATE = "terminate"


class ViolationEvent(BaseModel):
    """A single violation reported by a client-side monitor."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Producer-assigned event id")
    exam_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    event_type: EventType
    timestamp: datetime = Field(..., description="When the monitor observed the violation")
    severity: Severity
    details: dict[str, Any] = Field(
        default_factory=dict, description="Opaque producer payload"
    )
    action: MonitorAction = Field(
        default=MonitorAction.LOG, description="Monitor's suggested local response"
    )

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return assume_utc(value)


class ExamContext(BaseModel):
    """Where in the exam the violation happened."""

    model_config = ConfigDict(frozen=True)

    is_high_stakes: bool = False
    time_remaining_seconds: float = Field(default=3600.0, ge=0)
    question_number: int = Field(default=0, ge=0)
    total_questions: int = Field(default=0, ge=0)

    @property
    def question_progress(self) -> float:
        if self.total_questions <= 0:
            return 0.0
        return self.question_number / self.total_questions


class EnvironmentContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_business_hours: bool = True
    network_quality: Literal["good", "fair", "poor"] = "good"
    device_type: Literal["desktop", "laptop", "tablet", "mobile"] = "desktop"


class ScoringContext(BaseModel):
    """Everything the severity calculation is allowed to look at."""

    model_config = ConfigDict(frozen=True)

    event: ViolationEvent
    user_history: UserRiskHistory | None = Field(
        default=None, description="Read-only snapshot of the user's prior scores"
    )
    current_time: datetime
    exam_context: ExamContext = Field(default_factory=ExamContext)
    environment_context: EnvironmentContext = Field(default_factory=EnvironmentContext)

    @field_validator("current_time")
    @classmethod
    def _normalize_current_time(cls, value: datetime) -> datetime:
        return assume_utc(value)

    @property
    def user_id(self) -> str:
        return self.event.user_id


def is_business_hours(moment: datetime) -> bool:
    """Monday-Friday, 09:00-18:00 in the timestamp's own timezone."""
    return moment.weekday() < 5 and 9 <= moment.hour < 18
