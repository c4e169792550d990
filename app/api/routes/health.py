"""
Health Check Route — GET /health
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.dependencies import get_orchestrator
from app.workers.violation_worker import ViolationOrchestrator

router = APIRouter()


@router.get("/health")
async def health(orchestrator: ViolationOrchestrator = Depends(get_orchestrator)):
    """Health check endpoint."""
    stats = orchestrator.stats()
    return {
        "status": "degraded" if stats.backpressure else "ok",
        "version": "1.0.0",
        "consumer_running": stats.running,
        "queue_depth": stats.depth,
    }
