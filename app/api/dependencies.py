"""
FastAPI Dependencies — Shared singletons injected via Depends().
"""

from __future__ import annotations

from functools import lru_cache

from app.audit.logger import AuditLogger
from app.core.event_log import ViolationEventLog
from app.core.risk_history import RiskHistoryStore
from app.engine.scoring_service import SeverityScoringService
from app.engine.trend_service import TrendAnalysisService
from app.integrations.collaborators import InMemoryReportGenerator
from app.workers.violation_worker import ViolationOrchestrator


@lru_cache
def get_audit_logger() -> AuditLogger:
    """Shared audit logger singleton."""
    return AuditLogger()


@lru_cache
def get_history_store() -> RiskHistoryStore:
    """Shared user risk history singleton."""
    return RiskHistoryStore()


@lru_cache
def get_event_log() -> ViolationEventLog:
    """Shared violation event log singleton."""
    return ViolationEventLog()


@lru_cache
def get_report_generator() -> InMemoryReportGenerator:
    """Shared report generator singleton."""
    return InMemoryReportGenerator()


@lru_cache
def get_scoring_service() -> SeverityScoringService:
    """Shared severity scoring singleton."""
    return SeverityScoringService(
        history=get_history_store(),
        audit=get_audit_logger(),
    )


@lru_cache
def get_trend_service() -> TrendAnalysisService:
    """Shared trend analysis singleton."""
    return TrendAnalysisService(
        event_log=get_event_log(),
        history=get_history_store(),
    )


@lru_cache
def get_orchestrator() -> ViolationOrchestrator:
    """Shared violation orchestrator singleton."""
    return ViolationOrchestrator(
        scoring=get_scoring_service(),
        event_log=get_event_log(),
        trends=get_trend_service(),
        reports=get_report_generator(),
        audit=get_audit_logger(),
    )
