"""
Processing Models — Orchestration state, collaborator contracts and API schemas.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from app.models.score_models import RiskLevel, SeverityScore
from app.models.violation_models import ViolationEvent


class ProcessingState(str, Enum):
    RECEIVED = "received"
    QUEUED = "queued"
    SCORED = "scored"
    ESCALATED = "escalated"
    REPORT_QUEUED = "report_queued"
    DONE = "done"
    DISCARDED = "discarded"
    FAILED = "failed"


class ProcessingResult(BaseModel):
    """Outcome of pushing one event through the pipeline."""

    event_id: str
    user_id: str
    session_id: str
    state: ProcessingState = ProcessingState.RECEIVED
    state_history: list[ProcessingState] = Field(default_factory=list)
    severity_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    score: SeverityScore | None = None
    escalated: bool = False
    report_generated: bool = False
    evidence_collected: int = 0
    recommendations: list[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    duplicate: bool = False
    error: str | None = None

    def transition(self, state: ProcessingState) -> None:
        self.state = state
        self.state_history.append(state)


class EvidenceItem(BaseModel):
    """Opaque evidence reference returned by the evidence collector."""

    id: str
    kind: str = Field(..., description="e.g. screenshot, dom_snapshot, network_trace")
    captured_at: datetime
    uri: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReportTimeRange(BaseModel):
    start: datetime
    end: datetime


class ReportData(BaseModel):
    violations: list[ViolationEvent] = Field(default_factory=list)
    time_range: ReportTimeRange


class ReportOptions(BaseModel):
    priority: str = "medium"
    recipients: list[str] = Field(default_factory=list)


class Report(BaseModel):
    id: str
    template_id: str
    data: ReportData
    options: ReportOptions
    created_at: datetime


class SecurityAuditEntry(BaseModel):
    """One security audit record."""

    action: str
    severity: str
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueueStats(BaseModel):
    """Queue depth and pipeline counters. Depth above max_depth is the backpressure signal."""

    depth: int = 0
    max_depth: int = 0
    backpressure: bool = False
    running: bool = False
    processed: int = 0
    escalated: int = 0
    reports_generated: int = 0
    duplicates: int = 0
    discarded: int = 0
    failed: int = 0
    capacity_alerts: int = 0


class RecordViolationResponse(BaseModel):
    accepted: bool


class CancelSessionResponse(BaseModel):
    session_id: str
    removed: int
    flushed: bool = False
