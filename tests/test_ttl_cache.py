"""
Tests for TTL Cache — lazy expiry and adaptive threshold tracking.
"""

import pytest

from app.cache.ttl_cache import AdaptiveThresholdStore, ScoreCache, TTLCache, next_adaptive_threshold
from app.models.policy_models import AdaptiveThresholdPolicy
from app.models.violation_models import EventType


def test_entry_expires_after_ttl(fake_clock):
    cache = TTLCache(ttl_seconds=300, clock=fake_clock)
    cache.put("key", "value")

    fake_clock.advance(299)
    assert cache.get("key") == "value"

    fake_clock.advance(1)
    assert cache.get("key") is None
    assert cache.size == 0


def test_purge_expired_counts_removed(fake_clock):
    cache = TTLCache(ttl_seconds=10, clock=fake_clock)
    cache.put("a", 1)
    cache.put("b", 2, ttl_seconds=100)

    fake_clock.advance(50)

    assert cache.purge_expired() == 1
    assert dict(cache.items()) == {"b": 2}


def test_score_cache_invalidates_one_user(fake_clock, make_event):
    from app.core.severity_scorer import conservative_default_score

    cache = ScoreCache(clock=fake_clock)
    a = make_event(user_id="alice")
    b = make_event(user_id="bob")
    cache.put(("alice", a.id, "t"), conservative_default_score(a, a.timestamp))
    cache.put(("bob", b.id, "t"), conservative_default_score(b, b.timestamp))

    assert cache.invalidate_user("alice") == 1
    assert cache.get(("bob", b.id, "t")) is not None


def test_adaptive_threshold_ema_and_clamp():
    policy = AdaptiveThresholdPolicy()

    assert next_adaptive_threshold(None, 40, policy) == pytest.approx(40)
    assert next_adaptive_threshold(40, 60, policy) == pytest.approx(42)
    assert next_adaptive_threshold(None, 1, policy) == policy.minimum
    assert next_adaptive_threshold(100, 500, policy) == policy.maximum


def test_threshold_store_is_keyed_by_user_and_type(fake_clock):
    store = AdaptiveThresholdStore(ttl_seconds=60, clock=fake_clock)
    policy = AdaptiveThresholdPolicy()

    store.update("alice", EventType.TAB_SWITCH, 20, policy)
    store.update("alice", EventType.DEV_TOOLS, 50, policy)
    store.update("bob", EventType.TAB_SWITCH, 30, policy)

    assert store.for_user("alice") == {"tab_switch": 20, "dev_tools": 50}
    assert store.export()["bob_tab_switch"] == 30

    fake_clock.advance(61)
    assert store.get("alice", EventType.TAB_SWITCH) is None
