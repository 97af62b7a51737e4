"""Result cache entry model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class CacheState(str, Enum):
    """Lifecycle state of a cache key.

    absent -> computing -> fresh -> stale -> computing -> fresh -> ...
    """

    ABSENT = "absent"
    COMPUTING = "computing"
    FRESH = "fresh"
    STALE = "stale"


class ResultKind(str, Enum):
    """Kind of cached result."""

    SPIKE = "spike"
    TREND = "trend"


@dataclass(frozen=True)
class CacheKey:
    """Cache key: one result per (entity, metric, timeframe, kind)."""

    entity_id: str
    metric_name: str
    timeframe: str
    kind: ResultKind = ResultKind.SPIKE

    def __str__(self) -> str:
        return f"{self.entity_id}:{self.timeframe}:{self.metric_name}:{self.kind.value}"


@dataclass
class CacheEntry:
    """A cached value with its creation time and TTL.

    ``created_at`` is read from the cache clock (monotonic seconds);
    ``created_wall`` is kept for observability only.
    """

    key: CacheKey
    value: Any
    created_at: float
    ttl: float
    created_wall: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def age(self, now: float) -> float:
        """Seconds since the entry was created."""
        return max(0.0, now - self.created_at)

    def is_stale(self, now: float) -> bool:
        """Check if the TTL has elapsed."""
        return self.age(now) >= self.ttl

    def state(self, now: float) -> CacheState:
        """State of this entry at ``now`` (fresh or stale)."""
        return CacheState.STALE if self.is_stale(now) else CacheState.FRESH

    def ttl_remaining(self, now: float) -> float:
        """Seconds until the entry goes stale."""
        return max(0.0, self.ttl - self.age(now))
