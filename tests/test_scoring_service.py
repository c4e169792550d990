"""
Tests for Scoring Service — side effects, caching and failure fallback.
"""

import asyncio
from datetime import timedelta

import pytest

from app.models.score_models import RiskLevel
from app.models.violation_models import ScoringContext


def _ctx(event):
    return ScoringContext(event=event, current_time=event.timestamp)


def test_score_appends_to_history(scoring_service, make_event):
    first = make_event(offset_seconds=0)
    second = make_event(offset_seconds=30)

    async def run():
        await scoring_service.score(_ctx(first))
        return await scoring_service.score(_ctx(second))

    score = asyncio.run(run())
    history = scoring_service.get_history("user-1")

    assert history.violation_count == 2
    assert [s.event_id for s in history.scores] == [first.id, second.id]
    assert "repeat_offense" in score.factors.context_factors
    assert "recent_violations" in score.factors.time_factors


def test_cached_score_is_not_recorded_twice(scoring_service, make_event):
    event = make_event()

    async def run():
        a = await scoring_service.score(_ctx(event))
        b = await scoring_service.score(_ctx(event))
        return a, b

    a, b = asyncio.run(run())

    assert a is b
    assert scoring_service.get_history("user-1").violation_count == 1


def test_adaptive_threshold_seeded_by_first_score(scoring_service, make_event):
    asyncio.run(scoring_service.score(_ctx(make_event())))

    assert scoring_service.get_adaptive_thresholds("user-1") == {"tab_switch": pytest.approx(15.0)}


def test_calculation_failure_returns_conservative_default(scoring_service, audit, make_event, monkeypatch):
    def broken(*args, **kwargs):
        raise ZeroDivisionError("boom")

    monkeypatch.setattr("app.engine.scoring_service.compute_severity_score", broken)

    score = asyncio.run(scoring_service.score(_ctx(make_event())))

    assert score.risk_level == RiskLevel.LOW
    assert score.confidence == 0.5
    assert score.factors.context_factors == ["calculation_failed"]
    assert scoring_service.get_history("user-1") is None
    assert audit.actions() == ["severity_calculation_failed"]


def test_users_do_not_share_history(scoring_service, make_event):
    async def run():
        await asyncio.gather(
            scoring_service.score(_ctx(make_event(user_id="alice"))),
            scoring_service.score(_ctx(make_event(user_id="bob"))),
        )

    asyncio.run(run())

    assert scoring_service.get_history("alice").violation_count == 1
    assert scoring_service.get_history("bob").violation_count == 1


def test_reset_user_clears_all_state(scoring_service, make_event):
    asyncio.run(scoring_service.score(_ctx(make_event())))

    scoring_service.reset_user("user-1")

    assert scoring_service.get_history("user-1") is None
    assert scoring_service.get_adaptive_thresholds("user-1") == {}
    assert scoring_service.cache.size == 0


def test_clear_old_data_prunes_by_retention(scoring_service, make_event, base_time):
    asyncio.run(scoring_service.score(_ctx(make_event())))

    kept = scoring_service.clear_old_data(older_than_days=30, now=base_time + timedelta(days=1))
    removed = scoring_service.clear_old_data(older_than_days=30, now=base_time + timedelta(days=31))

    assert kept == 0
    assert removed == 1
    assert scoring_service.get_history("user-1") is None


def test_clear_old_data_releases_locks_of_pruned_users(scoring_service, make_event, base_time):
    async def run():
        await scoring_service.score(_ctx(make_event(user_id="stale")))
        await scoring_service.score(
            _ctx(make_event(user_id="active", offset_seconds=20 * 86_400))
        )

    asyncio.run(run())
    assert "stale" in scoring_service.user_locks

    scoring_service.clear_old_data(older_than_days=15, now=base_time + timedelta(days=25))

    assert "stale" not in scoring_service.user_locks
    assert "active" in scoring_service.user_locks
    assert len(scoring_service.user_locks) == 1


def test_export_scoring_data_for_user(scoring_service, make_event):
    asyncio.run(scoring_service.score(_ctx(make_event())))

    exported = scoring_service.export_scoring_data("user-1")

    assert exported["user_id"] == "user-1"
    assert len(exported["severity_history"]["scores"]) == 1
    assert "tab_switch" in exported["adaptive_thresholds"]
