"""
Tests for Trend Service — full analysis passes, detector isolation and retention.
"""

import asyncio
import json
import threading
from datetime import timedelta

from app.core.event_log import ViolationEventLog
from app.engine import trend_service
from app.engine.trend_service import TrendAnalysisService
from app.models.trend_models import PatternType
from app.models.violation_models import EventType, Severity


def _service(events):
    log = ViolationEventLog()
    for event in events:
        log.append(event)
    return TrendAnalysisService(event_log=log)


def _coordinated(make_event):
    return [
        make_event(EventType.TAB_SWITCH, user_id="alice", offset_seconds=0),
        make_event(EventType.TAB_SWITCH, user_id="bob", offset_seconds=2),
    ]


def test_run_analysis_collects_patterns_and_profiles(make_event, base_time):
    service = _service(_coordinated(make_event))

    result = asyncio.run(service.run_analysis(now=base_time))

    assert result.events_analyzed == 2
    assert len(result.coordination_analyses) == 1
    assert PatternType.COORDINATED_CHEATING in {p.type for p in result.patterns}
    assert set(result.user_profiles) == {"alice", "bob"}
    assert any("coordinated cheating" in r for r in result.recommendations)
    assert len(service.get_coordination_analyses()) == 1
    assert service.get_user_profile("alice").total_violations == 1


def test_failing_detector_does_not_abort_pass(make_event, base_time, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("detector bug")

    monkeypatch.setattr("app.engine.trend_service.detect_repeat_offenders", broken)
    service = _service(_coordinated(make_event))

    result = asyncio.run(service.run_analysis(now=base_time))

    assert len(result.coordination_analyses) == 1


def test_prune_drops_results_past_retention(make_event, base_time):
    events = _coordinated(make_event) + [
        make_event(EventType.NETWORK_VIOLATION, Severity.HIGH, user_id="carol", offset_seconds=600),
        make_event(EventType.NETWORK_VIOLATION, Severity.HIGH, user_id="carol", offset_seconds=660),
    ]
    service = _service(events)
    asyncio.run(service.run_analysis(now=base_time))
    stored = len(service.get_trend_patterns()) + len(service.get_coordination_analyses())

    assert service.prune(now=base_time + timedelta(days=1), retention_days=30) == 0
    assert service.prune(now=base_time + timedelta(days=31), retention_days=30) == stored
    assert service.get_trend_patterns() == []
    assert service.get_user_profile("alice") is None


def test_empty_log_yields_empty_result(base_time):
    result = asyncio.run(_service([]).run_analysis(now=base_time))

    assert result.patterns == []
    assert result.analysis_coverage == 0.0


def test_repeated_passes_update_findings_in_place(make_event, base_time):
    events = _coordinated(make_event) + [
        make_event(EventType.DEV_TOOLS, Severity.HIGH, user_id="carol", offset_seconds=h * 3600)
        for h in (1, 2, 3)
    ]
    service = _service(events)

    results = [
        asyncio.run(service.run_analysis(now=base_time + timedelta(hours=h))) for h in (4, 5, 6)
    ]

    repeat = [p for p in service.get_trend_patterns() if p.type == PatternType.REPEAT_OFFENDER]
    coordinated = [
        p for p in service.get_trend_patterns() if p.type == PatternType.COORDINATED_CHEATING
    ]
    assert len(repeat) == 1
    assert len(coordinated) == 1
    assert len(service.get_coordination_analyses()) == 1

    first_ids = {p.id for p in results[0].patterns}
    assert {p.id for p in results[-1].patterns} == first_ids
    assert repeat[0].detected_at == base_time + timedelta(hours=4)
    assert repeat[0].time_window.end == base_time + timedelta(hours=6)


def test_detectors_run_off_the_event_loop(make_event, base_time, monkeypatch):
    threads = {}
    detect = trend_service.detect_coordinated_cheating

    def recording(*args, **kwargs):
        threads["detector"] = threading.get_ident()
        return detect(*args, **kwargs)

    monkeypatch.setattr("app.engine.trend_service.detect_coordinated_cheating", recording)
    service = _service(_coordinated(make_event))

    async def run():
        threads["loop"] = threading.get_ident()
        return await service.run_analysis(now=base_time)

    result = asyncio.run(run())

    assert len(result.coordination_analyses) == 1
    assert threads["detector"] != threads["loop"]


def test_export_analysis_data(make_event, base_time):
    service = _service(_coordinated(make_event))
    assert service.export_analysis_data()["last_analysis"] is None

    asyncio.run(service.run_analysis(now=base_time))
    exported = service.export_analysis_data()

    assert {p["type"] for p in exported["patterns"]} == {"coordinated_cheating"}
    assert exported["coordination_analyses"][0]["involved_users"] == ["alice", "bob"]
    assert set(exported["user_profiles"]) == {"alice", "bob"}
    assert exported["policy"]["pattern_store_capacity"] == service.policy.pattern_store_capacity
    assert exported["last_analysis"] == base_time.isoformat()
    json.dumps(exported)
