"""
Test fixtures shared across all ExamGuard tests.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from app.core.event_log import ViolationEventLog
from app.core.risk_history import RiskHistoryStore
from app.engine.scoring_service import SeverityScoringService
from app.integrations.collaborators import InMemoryReportGenerator
from app.models.score_models import RiskLevel, ScoreFactors, SeverityScore
from app.models.violation_models import (
    EventType,
    ExamContext,
    ScoringContext,
    Severity,
    ViolationEvent,
)
from app.workers.violation_worker import ViolationOrchestrator

# A Wednesday, inside business hours
BASE_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


class RecordingAudit:
    """Audit sink that keeps entries in memory."""

    def __init__(self):
        self.entries = []

    def log_security_event(self, action, severity, description, metadata=None):
        self.entries.append(
            {"action": action, "severity": severity, "description": description, "metadata": metadata or {}}
        )

    def actions(self):
        return [e["action"] for e in self.entries]


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start=1_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_event():
    """Factory for violation events with sequential ids."""
    ids = itertools.count(1)

    def _make(
        event_type=EventType.TAB_SWITCH,
        severity=Severity.MEDIUM,
        user_id="user-1",
        session_id="session-1",
        exam_id="exam-1",
        at=None,
        offset_seconds=0,
        event_id=None,
    ):
        timestamp = (at or BASE_TIME) + timedelta(seconds=offset_seconds)
        return ViolationEvent(
            id=event_id or f"evt-{next(ids)}",
            exam_id=exam_id,
            user_id=user_id,
            session_id=session_id,
            event_type=event_type,
            timestamp=timestamp,
            severity=severity,
        )

    return _make


@pytest.fixture
def make_prior_score():
    """Factory for already-recorded severity scores."""

    def _make(total, at, risk_level=RiskLevel.LOW, event_type="tab_switch", user_id="user-1"):
        return SeverityScore(
            event_id=f"prior-{at.isoformat()}-{total}",
            user_id=user_id,
            total_score=total,
            risk_level=risk_level,
            factors=ScoreFactors(violation_type=event_type),
            calculated_at=at,
        )

    return _make


@pytest.fixture
def high_stakes_final_minutes():
    """Context provider: high-stakes exam with 2 minutes remaining."""

    def _provider(event):
        return ScoringContext(
            event=event,
            current_time=event.timestamp,
            exam_context=ExamContext(is_high_stakes=True, time_remaining_seconds=120),
        )

    return _provider


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def scoring_service(audit):
    return SeverityScoringService(history=RiskHistoryStore(), audit=audit)


@pytest.fixture
def reports():
    return InMemoryReportGenerator()


@pytest.fixture
def orchestrator(scoring_service, reports, audit):
    return ViolationOrchestrator(
        scoring=scoring_service,
        event_log=ViolationEventLog(),
        reports=reports,
        audit=audit,
        batch_interval_ms=0,
    )
