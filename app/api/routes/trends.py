"""
Trend Routes — Detected patterns and coordination incidents.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_trend_service
from app.engine.trend_service import TrendAnalysisService
from app.models.trend_models import CoordinationAnalysis, TrendAnalysisResult, TrendPattern

router = APIRouter(prefix="/trends")


def _window(hours: float | None) -> timedelta | None:
    return timedelta(hours=hours) if hours is not None else None


@router.get("/patterns", response_model=list[TrendPattern])
async def trend_patterns(
    hours: float | None = Query(default=None, gt=0, description="Only patterns detected this recently"),
    trends: TrendAnalysisService = Depends(get_trend_service),
):
    return trends.get_trend_patterns(_window(hours))


@router.get("/coordination", response_model=list[CoordinationAnalysis])
async def coordination_analyses(
    hours: float | None = Query(default=None, gt=0),
    trends: TrendAnalysisService = Depends(get_trend_service),
):
    return trends.get_coordination_analyses(_window(hours))


@router.post("/analyze", response_model=TrendAnalysisResult)
async def analyze(trends: TrendAnalysisService = Depends(get_trend_service)):
    """Run a trend analysis pass now."""
    return await trends.run_analysis()


@router.get("/export")
async def export_analysis(trends: TrendAnalysisService = Depends(get_trend_service)):
    """Stored patterns, coordination incidents, profiles and policy as JSON."""
    return trends.export_analysis_data()
