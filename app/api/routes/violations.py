"""
Violation Routes — Ingestion, queue inspection, session cancellation and user risk.

  POST   /violations                 → {"accepted": bool}
  GET    /violations/queue           → queue depth and pipeline counters
  DELETE /sessions/{session_id}/queue → flush or discard one session's queued events
  GET    /users/{user_id}/risk       → the user's risk history snapshot
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.dependencies import get_orchestrator, get_scoring_service
from app.engine.scoring_service import SeverityScoringService
from app.models.processing_models import (
    CancelSessionResponse,
    QueueStats,
    RecordViolationResponse,
)
from app.models.score_models import UserRiskHistory
from app.workers.violation_worker import ViolationOrchestrator

logger = logging.getLogger("examguard.api")
router = APIRouter()


@router.post("/violations", response_model=RecordViolationResponse)
async def record_violation(
    request: Request,
    orchestrator: ViolationOrchestrator = Depends(get_orchestrator),
):
    """Accept one violation event. Malformed payloads are rejected with accepted=false."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected violation: body is not valid JSON")
        return RecordViolationResponse(accepted=False)

    return RecordViolationResponse(accepted=orchestrator.record_violation(payload))


@router.get("/violations/queue", response_model=QueueStats)
async def queue_stats(orchestrator: ViolationOrchestrator = Depends(get_orchestrator)):
    return orchestrator.stats()


@router.delete("/sessions/{session_id}/queue", response_model=CancelSessionResponse)
async def cancel_session(
    session_id: str,
    flush: bool = False,
    orchestrator: ViolationOrchestrator = Depends(get_orchestrator),
):
    """Stop monitoring a session: its queued events are flushed or discarded."""
    removed = await orchestrator.cancel_session(session_id, flush=flush)
    return CancelSessionResponse(session_id=session_id, removed=removed, flushed=flush)


@router.get("/users/{user_id}/risk", response_model=UserRiskHistory)
async def user_risk(
    user_id: str,
    scoring: SeverityScoringService = Depends(get_scoring_service),
):
    history = scoring.get_history(user_id)
    if history is None:
        raise HTTPException(status_code=404, detail=f"No risk history for user {user_id}")
    return history
