"""
External Collaborators — Interfaces the engine calls out to, with default implementations.

Evidence capture, report rendering and network/behavior fingerprinting live
outside the engine. Only their call contracts are modelled here.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from app.config import settings
from app.models.processing_models import (
    EvidenceItem,
    Report,
    ReportData,
    ReportOptions,
)
from app.models.violation_models import ViolationEvent

logger = logging.getLogger("examguard.collaborators")


class EvidenceCollector(Protocol):
    async def collect_evidence(
        self, event: ViolationEvent, session_id: str
    ) -> list[EvidenceItem]: ...


class ReportGenerator(Protocol):
    async def generate_report(
        self, template_id: str, data: ReportData, options: ReportOptions
    ) -> Report | None: ...


class AuditSink(Protocol):
    def log_security_event(
        self,
        action: str,
        severity: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class CoordinationSignalProvider(Protocol):
    """Pass-through scalars from network/device fingerprinting and behavior analysis."""

    def network_correlation(self, events: Sequence[ViolationEvent]) -> float | None: ...

    def behavioral_similarity(
        self, events_by_user: dict[str, list[ViolationEvent]]
    ) -> float | None: ...


class NullEvidenceCollector:
    """Collects nothing. Used when no evidence backend is wired in."""

    async def collect_evidence(
        self, event: ViolationEvent, session_id: str
    ) -> list[EvidenceItem]:
        logger.debug(f"No evidence backend configured for event {event.id}")
        return []


class InMemoryReportGenerator:
    """Keeps generated report requests in memory for the API and tests."""

    def __init__(self, capacity: int | None = None) -> None:
        self.reports: deque[Report] = deque(
            maxlen=capacity or settings.report_store_capacity
        )

    async def generate_report(
        self, template_id: str, data: ReportData, options: ReportOptions
    ) -> Report | None:
        report = Report(
            id=str(uuid.uuid4()),
            template_id=template_id,
            data=data,
            options=options,
            created_at=datetime.now(timezone.utc),
        )
        self.reports.append(report)
        logger.info(
            f"Report {report.id} queued from template '{template_id}' "
            f"({len(data.violations)} violations, priority={options.priority})"
        )
        return report


class NeutralSignalProvider:
    """No fingerprinting backend: every signal is unavailable."""

    def network_correlation(self, events: Sequence[ViolationEvent]) -> float | None:
        return None

    def behavioral_similarity(
        self, events_by_user: dict[str, list[ViolationEvent]]
    ) -> float | None:
        return None
