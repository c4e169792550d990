"""
TTL Cache — In-memory memoization with lazy expiry.

Backs the severity score cache and the adaptive threshold state. Entries are
never authoritative past their TTL: an expired entry is evicted on read.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Hashable, Iterator, TypeVar

from app.config import settings
from app.models.policy_models import AdaptiveThresholdPolicy
from app.models.score_models import SeverityScore
from app.models.violation_models import EventType

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with its absolute expiry time."""

    value: V
    expires_at: float
    stored_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[K, V]):
    """
    Key/value cache with per-entry time-to-live.

    Upgradeable to Redis by swapping the storage backend.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: dict[K, CacheEntry[V]] = {}

    def get(self, key: K) -> V | None:
        """Return the live value for key, or None if missing or expired."""
        entry = self._store.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._store[key]
            return None

        return entry.value

    def put(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._store[key] = CacheEntry(value=value, expires_at=now + ttl, stored_at=now)

    def items(self) -> Iterator[tuple[K, V]]:
        """Iterate live entries. Expired ones are skipped, not evicted."""
        now = self._clock()
        for key, entry in list(self._store.items()):
            if not entry.is_expired(now):
                yield key, entry.value

    def invalidate(self, predicate: Callable[[K], bool]) -> int:
        """Remove every entry whose key matches predicate. Returns count removed."""
        keys_to_remove = [k for k in self._store if predicate(k)]
        for key in keys_to_remove:
            del self._store[key]
        return len(keys_to_remove)

    def purge_expired(self) -> int:
        now = self._clock()
        return self.invalidate(lambda k: self._store[k].is_expired(now))

    def clear(self) -> None:
        self._store.clear()

    @property
    def size(self) -> int:
        """Number of stored entries, including not-yet-evicted expired ones."""
        return len(self._store)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        expired = sum(1 for e in self._store.values() if e.is_expired(now))
        return {
            "total_entries": len(self._store),
            "expired_entries": expired,
            "active_entries": len(self._store) - expired,
        }


ScoreCacheKey = tuple[str, str, str]


class ScoreCache(TTLCache[ScoreCacheKey, SeverityScore]):
    """Severity scores keyed by (user_id, event_id, scoring time)."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(
            ttl_seconds if ttl_seconds is not None else settings.scoring_cache_ttl_seconds,
            clock,
        )

    def invalidate_user(self, user_id: str) -> int:
        return self.invalidate(lambda key: key[0] == user_id)


ThresholdKey = tuple[str, EventType]


def threshold_key_label(key: ThresholdKey) -> str:
    user_id, event_type = key
    return f"{user_id}_{event_type.value}"


class AdaptiveThresholdStore:
    """
    Per (user_id, event_type) exponentially tracked score level.

    new = old * (1 - rate) + score * rate, clamped to [minimum, maximum].
    The first observation seeds old with the score itself.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache: TTLCache[ThresholdKey, float] = TTLCache(
            ttl_seconds if ttl_seconds is not None else settings.adaptive_threshold_ttl_seconds,
            clock,
        )

    def get(self, user_id: str, event_type: EventType) -> float | None:
        return self._cache.get((user_id, event_type))

    def update(
        self,
        user_id: str,
        event_type: EventType,
        score: float,
        policy: AdaptiveThresholdPolicy,
    ) -> float:
        new_threshold = next_adaptive_threshold(self.get(user_id, event_type), score, policy)
        self._cache.put((user_id, event_type), new_threshold)
        return new_threshold

    def for_user(self, user_id: str) -> dict[str, float]:
        return {
            event_type.value: value
            for (uid, event_type), value in self._cache.items()
            if uid == user_id
        }

    def reset_user(self, user_id: str) -> int:
        return self._cache.invalidate(lambda key: key[0] == user_id)

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def export(self) -> dict[str, float]:
        return {threshold_key_label(k): v for k, v in self._cache.items()}

    def clear(self) -> None:
        self._cache.clear()


def next_adaptive_threshold(
    current: float | None,
    score: float,
    policy: AdaptiveThresholdPolicy,
) -> float:
    """Apply one EMA step to an adaptive threshold."""
    previous = score if current is None else current
    rate = policy.adaptation_rate
    updated = previous * (1 - rate) + score * rate
    return max(policy.minimum, min(policy.maximum, updated))
