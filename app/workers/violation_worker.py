"""
Violation Worker — Async orchestrator driving each violation through the pipeline.

Pipeline per event:
1. Build the scoring context
2. Score (never raises; falls back to a conservative default)
3. Request evidence from the evidence collector
4. Decide escalation and rolled-up reporting
5. Run incident report and violation report requests concurrently
6. Audit and remember the result for duplicate suppression

Ingestion only validates and appends. A single consumer task drains the
FIFO queue in batches; inside a batch each user's events run in order and
different users run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError

from app.cache.ttl_cache import TTLCache
from app.config import settings
from app.core.event_log import ViolationEventLog
from app.engine.scoring_service import SeverityScoringService
from app.engine.trend_service import TrendAnalysisService
from app.errors import CapacityError, CollaboratorError, InputError
from app.integrations.collaborators import (
    AuditSink,
    EvidenceCollector,
    InMemoryReportGenerator,
    NullEvidenceCollector,
    ReportGenerator,
)
from app.models.policy_models import EscalationPolicy
from app.models.processing_models import (
    ProcessingResult,
    ProcessingState,
    QueueStats,
    ReportData,
    ReportOptions,
    ReportTimeRange,
)
from app.models.score_models import SeverityScore
from app.models.violation_models import (
    EnvironmentContext,
    ScoringContext,
    Severity,
    ViolationEvent,
    assume_utc,
    is_business_hours,
)

logger = logging.getLogger("examguard.worker")

ContextProvider = Callable[[ViolationEvent], ScoringContext]


def default_context(event: ViolationEvent) -> ScoringContext:
    """Score at the event's own timestamp with a neutral exam context."""
    return ScoringContext(
        event=event,
        current_time=event.timestamp,
        environment_context=EnvironmentContext(
            is_business_hours=is_business_hours(event.timestamp)
        ),
    )


def parse_violation(raw: Any) -> ViolationEvent:
    """Validate a raw payload. Raises InputError when required fields are missing or invalid."""
    try:
        return ViolationEvent.model_validate(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "<root>" for err in e.errors()})
        raise InputError(f"Malformed violation event: invalid {', '.join(fields)}") from e


def should_escalate(
    event: ViolationEvent,
    score: SeverityScore,
    policy: EscalationPolicy,
) -> bool:
    if not policy.enabled:
        return False

    if event.severity == Severity.CRITICAL or score.total_score >= policy.critical_score:
        return True

    return (
        event.severity == Severity.HIGH
        and score.total_score >= policy.high_score
        and event.event_type in policy.high_risk_types
    )


def should_generate_report(
    event: ViolationEvent,
    recent_count: int,
    policy: EscalationPolicy,
) -> bool:
    if not policy.reports_enabled:
        return False
    return recent_count >= policy.report_min_violations or event.severity in (
        Severity.HIGH,
        Severity.CRITICAL,
    )


class ViolationOrchestrator:
    """
    Queue, consumer and escalation logic for one engine instance.

    Usage:
        orchestrator = ViolationOrchestrator(scoring, event_log)
        orchestrator.start()                 # inside a running loop
        orchestrator.record_violation(raw)   # O(1), never awaits
    """

    def __init__(
        self,
        scoring: SeverityScoringService,
        event_log: ViolationEventLog,
        trends: TrendAnalysisService | None = None,
        evidence: EvidenceCollector | None = None,
        reports: ReportGenerator | None = None,
        audit: AuditSink | None = None,
        policy: EscalationPolicy | None = None,
        context_provider: ContextProvider | None = None,
        batch_size: int | None = None,
        batch_interval_ms: float | None = None,
        max_depth: int | None = None,
    ) -> None:
        self.scoring = scoring
        self.event_log = event_log
        self.trends = trends
        self.evidence = evidence or NullEvidenceCollector()
        self.reports = reports or InMemoryReportGenerator()
        self.audit = audit
        self.policy = policy or EscalationPolicy()
        self.context_provider = context_provider or default_context
        self.batch_size = batch_size or settings.queue_batch_size
        self.batch_interval = (
            batch_interval_ms if batch_interval_ms is not None
            else settings.queue_batch_interval_ms
        ) / 1000
        self.max_depth = max_depth or settings.queue_max_depth

        self._queue: deque[ViolationEvent] = deque()
        self._wakeup = asyncio.Event()
        self._accepted_ids: TTLCache[str, bool] = TTLCache(settings.processed_event_ttl_seconds)
        self._results: TTLCache[str, ProcessingResult] = TTLCache(
            settings.processed_event_ttl_seconds
        )
        self._over_capacity = False
        self._consumer: asyncio.Task | None = None
        self._maintenance: asyncio.Task | None = None
        self._counters = {
            "processed": 0,
            "escalated": 0,
            "reports_generated": 0,
            "duplicates": 0,
            "discarded": 0,
            "failed": 0,
            "capacity_alerts": 0,
        }

    # ── Ingestion ──

    def record_violation(self, event: ViolationEvent | dict[str, Any]) -> bool:
        """Validate and enqueue one event. Returns False only for malformed input."""
        if not isinstance(event, ViolationEvent):
            try:
                event = parse_violation(event)
            except InputError as e:
                logger.warning(str(e))
                return False

        if self._accepted_ids.get(event.id) is None:
            self._accepted_ids.put(event.id, True)
            self.event_log.append(event)

        self._queue.append(event)
        self._check_capacity()
        self._wakeup.set()
        logger.debug(f"[{event.id}] queued ({len(self._queue)} pending)")
        return True

    def _check_capacity(self) -> None:
        depth = len(self._queue)
        if depth <= self.max_depth:
            self._over_capacity = False
            return
        if self._over_capacity:
            return

        self._over_capacity = True
        self._counters["capacity_alerts"] += 1
        alert = CapacityError(depth, self.max_depth)
        logger.warning(f"{alert}; backpressure signalled, no events dropped")
        self._audit(
            "queue_capacity_exceeded",
            "high",
            str(alert),
            {"depth": depth, "max_depth": self.max_depth},
        )

    # ── Consumer ──

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        if self._consumer is None or self._consumer.done():
            self._consumer = loop.create_task(self._consume())
        if self._maintenance is None or self._maintenance.done():
            self._maintenance = loop.create_task(self._maintain_periodically())
        logger.info(
            f"Violation consumer started (batch={self.batch_size}, "
            f"interval={self.batch_interval * 1000:.0f}ms, max_depth={self.max_depth})"
        )

    async def stop(self) -> None:
        for task in (self._consumer, self._maintenance):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consumer = None
        self._maintenance = None
        logger.info(f"Violation consumer stopped ({len(self._queue)} events still queued)")

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def _consume(self) -> None:
        while True:
            if not self._queue:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            await self._process_batch(self._take_batch())

            if self._queue:
                await asyncio.sleep(self.batch_interval)

    async def drain(self) -> list[ProcessingResult]:
        """Process everything queued right now, batch by batch, without pausing."""
        results: list[ProcessingResult] = []
        while self._queue:
            results.extend(await self._process_batch(self._take_batch()))
        return results

    def _take_batch(self) -> list[ViolationEvent]:
        count = min(self.batch_size, len(self._queue))
        batch = [self._queue.popleft() for _ in range(count)]
        if len(self._queue) <= self.max_depth:
            self._over_capacity = False
        return batch

    async def _process_batch(self, batch: list[ViolationEvent]) -> list[ProcessingResult]:
        by_user: dict[str, list[ViolationEvent]] = {}
        for event in batch:
            by_user.setdefault(event.user_id, []).append(event)

        per_user = await asyncio.gather(
            *(self._process_in_order(events) for events in by_user.values())
        )
        return [result for results in per_user for result in results]

    async def _process_in_order(self, events: list[ViolationEvent]) -> list[ProcessingResult]:
        return [await self.process_event(event) for event in events]

    # ── Per-event pipeline ──

    async def process_event(self, event: ViolationEvent) -> ProcessingResult:
        """Run one event through scoring, escalation and reporting. Never raises."""
        previous = self._results.get(event.id)
        if previous is not None:
            self._counters["duplicates"] += 1
            logger.info(f"[{event.id}] duplicate delivery; returning stored result")
            return previous.model_copy(update={"duplicate": True})

        start_time = time.monotonic()
        result = ProcessingResult(
            event_id=event.id, user_id=event.user_id, session_id=event.session_id
        )
        result.transition(ProcessingState.RECEIVED)
        result.transition(ProcessingState.QUEUED)

        try:
            # ── Step 1–2: Score ──
            ctx = self.context_provider(event)
            score = await self.scoring.score(ctx)
            result.score = score
            result.severity_score = score.total_score
            result.risk_level = score.risk_level
            result.recommendations = list(score.recommended_actions)
            result.transition(ProcessingState.SCORED)

            # ── Step 3: Evidence ──
            result.evidence_collected = await self._collect_evidence(event)

            # ── Step 4: Decisions ──
            escalate = should_escalate(event, score, self.policy)
            recent = self.event_log.recent_for_user(
                event.user_id,
                timedelta(minutes=self.policy.report_window_minutes),
                event.timestamp,
            )
            report = should_generate_report(event, len(recent), self.policy)

            # ── Step 5: Escalation and reporting run concurrently ──
            jobs = []
            if escalate:
                result.escalated = True
                result.transition(ProcessingState.ESCALATED)
                jobs.append(self._escalate(event, result))
            if report:
                result.report_generated = True
                result.transition(ProcessingState.REPORT_QUEUED)
                jobs.append(self._generate_violation_report(event))
            if jobs:
                await asyncio.gather(*jobs)

            result.transition(ProcessingState.DONE)
            result.processing_time_ms = round((time.monotonic() - start_time) * 1000, 2)

            self._counters["processed"] += 1
            self._counters["escalated"] += int(result.escalated)
            self._counters["reports_generated"] += int(result.report_generated)

            self._audit(
                "violation_processed",
                score.risk_level.value,
                f"Violation processed successfully: {event.event_type.value}",
                {
                    **_event_metadata(event),
                    "severity_score": score.total_score,
                    "evidence_collected": result.evidence_collected,
                    "escalated": result.escalated,
                    "report_generated": result.report_generated,
                    "processing_time_ms": result.processing_time_ms,
                },
            )
        except Exception as e:
            result.transition(ProcessingState.FAILED)
            result.error = str(e)
            result.processing_time_ms = round((time.monotonic() - start_time) * 1000, 2)
            self._counters["failed"] += 1
            logger.error(f"[{event.id}] processing failed: {e}", exc_info=True)
            self._audit(
                "violation_processing_failed",
                "high",
                "Failed to process security violation",
                {
                    **_event_metadata(event),
                    "error": str(e),
                    "processing_time_ms": result.processing_time_ms,
                },
            )

        self._results.put(event.id, result)
        logger.info(
            f"[{event.id}] {event.event_type.value} for user {event.user_id}: "
            f"score={result.severity_score:.1f} ({result.risk_level.value}), "
            f"escalated={'yes' if result.escalated else 'no'}, "
            f"report={'yes' if result.report_generated else 'no'}"
        )
        return result

    async def _collect_evidence(self, event: ViolationEvent) -> int:
        try:
            items = await self.evidence.collect_evidence(event, event.session_id)
        except Exception as e:
            self._collaborator_failed(CollaboratorError("evidence_collector", str(e)), event)
            return 0
        return len(items)

    async def _escalate(self, event: ViolationEvent, result: ProcessingResult) -> None:
        if self.policy.generate_incident_reports:
            try:
                report = await self.reports.generate_report(
                    self.policy.incident_template,
                    ReportData(
                        violations=[event],
                        time_range=self._lookback_range(event),
                    ),
                    ReportOptions(
                        priority=result.risk_level.value,
                        recipients=list(self.policy.incident_recipients),
                    ),
                )
            except Exception as e:
                self._collaborator_failed(CollaboratorError("report_generator", str(e)), event)
            else:
                if report is not None:
                    self._audit(
                        "incident_report_generated",
                        "high",
                        f"Incident report generated for escalated violation: {event.event_type.value}",
                        {
                            **_event_metadata(event),
                            "report_id": report.id,
                            "severity_score": result.severity_score,
                            "risk_level": result.risk_level.value,
                        },
                    )

        self._audit(
            "violation_escalated",
            result.risk_level.value,
            f"Security violation escalated: {event.event_type.value}",
            {
                **_event_metadata(event),
                "severity_score": result.severity_score,
                "recommendations": result.recommendations,
                "evidence_collected": result.evidence_collected,
            },
        )
        logger.warning(
            f"[{event.id}] escalated: {event.event_type.value} "
            f"score={result.severity_score:.1f} user={event.user_id}"
        )

    async def _generate_violation_report(self, event: ViolationEvent) -> None:
        earlier = [
            e
            for e in self.event_log.recent_for_user(
                event.user_id,
                timedelta(minutes=self.policy.report_lookback_minutes),
                event.timestamp,
            )
            if e.id != event.id
        ]
        try:
            report = await self.reports.generate_report(
                self.policy.summary_template,
                ReportData(
                    violations=[event, *earlier],
                    time_range=self._lookback_range(event),
                ),
                ReportOptions(
                    priority=event.severity.value,
                    recipients=list(self.policy.summary_recipients),
                ),
            )
        except Exception as e:
            self._collaborator_failed(CollaboratorError("report_generator", str(e)), event)
            return

        if report is not None:
            self._audit(
                "violation_report_generated",
                event.severity.value,
                f"Automated violation report generated: {event.event_type.value}",
                {
                    **_event_metadata(event),
                    "report_id": report.id,
                    "violation_count": len(earlier) + 1,
                },
            )

    def _lookback_range(self, event: ViolationEvent) -> ReportTimeRange:
        return ReportTimeRange(
            start=event.timestamp - timedelta(minutes=self.policy.report_lookback_minutes),
            end=event.timestamp,
        )

    def _collaborator_failed(self, error: CollaboratorError, event: ViolationEvent) -> None:
        logger.error(
            f"[{event.id}] {error} (exam={event.exam_id}, user={event.user_id}, "
            f"session={event.session_id})"
        )
        self._audit(
            f"{error.collaborator}_failed",
            "medium",
            str(error),
            _event_metadata(event),
        )

    def _audit(
        self,
        action: str,
        severity: str,
        description: str,
        metadata: dict[str, Any],
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log_security_event(action, severity, description, metadata)
        except Exception as e:
            logger.error(f"{CollaboratorError('audit_sink', str(e))} while recording '{action}'")

    # ── Session cancellation ──

    async def cancel_session(self, session_id: str, flush: bool = False) -> int:
        """
        Remove one session's queued-but-unprocessed events.

        With flush=True the removed events are processed immediately, in
        queue order; otherwise they are discarded. Other sessions' events
        keep their positions.
        """
        removed = [e for e in self._queue if e.session_id == session_id]
        if not removed:
            return 0

        self._queue = deque(e for e in self._queue if e.session_id != session_id)
        if len(self._queue) <= self.max_depth:
            self._over_capacity = False

        if flush:
            logger.info(f"Flushing {len(removed)} queued events for session {session_id}")
            for event in removed:
                await self.process_event(event)
        else:
            self._counters["discarded"] += len(removed)
            logger.info(f"Discarded {len(removed)} queued events for session {session_id}")

        self._audit(
            "session_queue_flushed" if flush else "session_queue_discarded",
            "low",
            f"Monitoring stopped for session {session_id}",
            {"session_id": session_id, "events": len(removed)},
        )
        return len(removed)

    # ── Introspection and upkeep ──

    def get_result(self, event_id: str) -> ProcessingResult | None:
        return self._results.get(event_id)

    def stats(self) -> QueueStats:
        depth = len(self._queue)
        return QueueStats(
            depth=depth,
            max_depth=self.max_depth,
            backpressure=depth > self.max_depth,
            running=self.running,
            **self._counters,
        )

    def run_maintenance(self, now: datetime | None = None) -> dict[str, int]:
        """Apply every retention window once."""
        now = assume_utc(now) if now else datetime.now(timezone.utc)
        summary = {
            "history_scores": self.scoring.clear_old_data(now=now),
            "events": self.event_log.prune(now - timedelta(days=settings.event_retention_days)),
            "processed_results": self._results.purge_expired() + self._accepted_ids.purge_expired(),
            "trend_results": self.trends.prune(now) if self.trends else 0,
        }
        logger.info(f"Maintenance complete: {summary}")
        return summary

    async def _maintain_periodically(self) -> None:
        while True:
            await asyncio.sleep(settings.maintenance_interval_hours * 3600)
            try:
                self.run_maintenance()
            except Exception:
                logger.exception("Scheduled maintenance failed")


def _event_metadata(event: ViolationEvent) -> dict[str, Any]:
    return {
        "event_id": event.id,
        "exam_id": event.exam_id,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "event_type": event.event_type.value,
    }
