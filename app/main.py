"""
ExamGuard FastAPI Application — Violation scoring and pattern-detection engine.

  POST   /violations                  → enqueue a monitor-emitted violation
  GET    /violations/queue            → queue depth / backpressure
  DELETE /sessions/{session_id}/queue → stop monitoring a session
  GET    /users/{user_id}/risk        → user risk history
  GET    /trends/patterns             → detected patterns
  GET    /trends/coordination         → coordination incidents
  POST   /trends/analyze              → run trend analysis now
  GET    /health                      → {"status": "ok"}
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.dependencies import get_orchestrator, get_trend_service
from app.api.routes.health import router as health_router
from app.api.routes.trends import router as trends_router
from app.api.routes.violations import router as violations_router
from app.config import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("examguard")


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator = get_orchestrator()
    trends = get_trend_service()
    orchestrator.start()
    trends.start()
    logger.info("ExamGuard engine started")
    try:
        yield
    finally:
        await trends.stop()
        await orchestrator.stop()
        logger.info("ExamGuard engine stopped")


app = FastAPI(
    title="ExamGuard",
    description="Violation risk scoring, trend analysis and escalation for online exams",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(violations_router)
app.include_router(trends_router)
