"""In-memory result cache with TTL, LRU eviction and single-flight.

The cache is the one piece of shared mutable state in the engine. For any
key at most one computation runs at a time: the first caller computes,
callers arriving while it runs await the same future.
"""

import asyncio
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import structlog

from signal_engine.errors import CacheUnavailableError, ComputationTimeoutError
from signal_engine.models.cache_entry import CacheEntry, CacheKey, CacheState

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of a cache read."""

    hit: bool
    value: Any = None
    state: CacheState = CacheState.ABSENT


class ResultCache:
    """TTL + LRU cache for spike and trend results.
    
    Lifecycle: construct -> warm (optional) -> use -> shutdown. After
    shutdown every operation raises ``CacheUnavailableError``.
    
    PROPERTIES:
    - Entry reads and writes are guarded by a lock and safe across threads
    - Single-flight: ``get_or_compute`` coalesces concurrent callers per key
      on one event loop (in-flight futures belong to the running loop)
    - A cancelled or abandoned computation fails its joiners with
      ``ComputationTimeoutError``; only the cancelled caller sees
      ``CancelledError``
    - Bounded: least-recently-used entries are evicted past ``max_entries``
    - Failures are never cached
    """

    def __init__(
        self,
        max_entries: int = 1024,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.
        
        Args:
            max_entries: Entry count ceiling before LRU eviction
            default_ttl: TTL in seconds when ``set`` is given none
            clock: Monotonic clock in seconds (injectable for tests)
        """
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._inflight: dict[CacheKey, asyncio.Future] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._counters: Counter[str] = Counter()

    @property
    def closed(self) -> bool:
        """Whether the cache has been shut down."""
        return self._closed

    def get(self, key: CacheKey) -> CacheLookup:
        """Read a key. Only fresh entries are hits."""
        self._ensure_open()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._counters["misses"] += 1
                return CacheLookup(hit=False, state=self._state_locked(key))
            now = self._clock()
            if entry.is_stale(now):
                self._counters["misses"] += 1
                return CacheLookup(hit=False, state=self._state_locked(key))
            self._entries.move_to_end(key)
            self._counters["hits"] += 1
            return CacheLookup(hit=True, value=entry.value, state=CacheState.FRESH)

    def set(self, key: CacheKey, value: Any, ttl: float | None = None) -> None:
        """Store a value under ``key`` with ``ttl`` seconds to live."""
        self._ensure_open()
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("TTL must be positive")
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
            self._entries.move_to_end(key)
            self._evict_locked()

    def invalidate(self, key: CacheKey) -> bool:
        """Drop a key. Returns True if an entry was removed."""
        self._ensure_open()
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_entity(self, entity_id: str) -> int:
        """Drop every key of an entity. Returns the number removed."""
        self._ensure_open()
        with self._lock:
            keys = [k for k in self._entries if k.entity_id == entity_id]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def clear(self) -> None:
        """Drop every entry (in-flight computations are left running)."""
        self._ensure_open()
        with self._lock:
            self._entries.clear()

    def state(self, key: CacheKey) -> CacheState:
        """Lifecycle state of a key."""
        self._ensure_open()
        with self._lock:
            return self._state_locked(key)

    def describe(self, key: CacheKey) -> dict[str, Any]:
        """Observability view of one key.
        
        Returns:
            ``hit``, wall-clock ``timestamp`` of the entry, ``size`` of the
            cached value, ``state`` and ``ttlRemaining`` seconds
        """
        self._ensure_open()
        with self._lock:
            entry = self._entries.get(key)
            state = self._state_locked(key)
            if entry is None:
                return {
                    "hit": False,
                    "timestamp": None,
                    "size": 0,
                    "state": state.value,
                    "ttlRemaining": 0.0,
                }
            now = self._clock()
            return {
                "hit": not entry.is_stale(now),
                "timestamp": entry.created_wall.isoformat(),
                "size": _size_of(entry.value),
                "state": state.value,
                "ttlRemaining": entry.ttl_remaining(now),
            }

    def stats(self) -> dict[str, Any]:
        """Aggregate cache statistics."""
        self._ensure_open()
        with self._lock:
            by_kind = Counter(k.kind.value for k in self._entries)
            return {
                "totalEntries": len(self._entries),
                "inFlight": len(self._inflight),
                "entriesByKind": dict(by_kind),
                "maxEntries": self._max_entries,
                "hits": self._counters["hits"],
                "misses": self._counters["misses"],
                "computations": self._counters["computations"],
                "evictions": self._counters["evictions"],
            }

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        force_refresh: bool = False,
    ) -> Any:
        """Return the cached value or compute it exactly once.
        
        Args:
            key: Cache key
            compute: Coroutine factory producing the value
            ttl: TTL for the computed value
            force_refresh: Skip the fresh-entry check
            
        Returns:
            The cached or freshly computed value
            
        Raises:
            CacheUnavailableError: If the cache is shut down
            ComputationTimeoutError: If the shared computation was cancelled
                or abandoned while this caller was waiting on it
            Exception: Whatever ``compute`` raised (shared with joiners)
        """
        if not force_refresh:
            lookup = self.get(key)
            if lookup.hit:
                return lookup.value
        else:
            self._ensure_open()

        loop = asyncio.get_running_loop()
        with self._lock:
            inflight = self._inflight.get(key)
            if inflight is None:
                future: asyncio.Future = loop.create_future()
                self._inflight[key] = future
                self._counters["computations"] += 1

        if inflight is not None:
            return await self._join(key, inflight)

        try:
            value = await compute()
        except asyncio.CancelledError:
            _fail(future, ComputationTimeoutError(f"Computation for {key} was cancelled"))
            raise
        except Exception as exc:
            _fail(future, exc)
            raise
        finally:
            with self._lock:
                if self._inflight.get(key) is future:
                    del self._inflight[key]

        if not self._closed:
            self.set(key, value, ttl)
        if not future.done():
            future.set_result(value)
        return value

    def warm(self, entries: Iterable[tuple[CacheKey, Any]], ttl: float | None = None) -> int:
        """Seed the cache with precomputed values. Returns the count stored."""
        count = 0
        for key, value in entries:
            self.set(key, value, ttl)
            count += 1
        logger.info("cache_warmed", entries=count)
        return count

    def shutdown(self) -> None:
        """Fail waiting joiners, drop entries and close the cache.
        
        Computations already running finish for their own caller but are
        not stored.
        """
        if self._closed:
            return
        self._closed = True
        with self._lock:
            pending = list(self._inflight.items())
            self._inflight.clear()
            dropped = len(self._entries)
            self._entries.clear()
        for key, future in pending:
            _fail(future, ComputationTimeoutError(f"Computation for {key} was abandoned at shutdown"))
        logger.info("cache_shutdown", dropped=dropped)

    async def _join(self, key: CacheKey, inflight: asyncio.Future) -> Any:
        try:
            # Shield so one cancelled joiner does not cancel the shared work
            return await asyncio.shield(inflight)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            raise ComputationTimeoutError(f"Computation for {key} was cancelled") from None

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheUnavailableError("Result cache has been shut down")

    def _state_locked(self, key: CacheKey) -> CacheState:
        if key in self._inflight:
            return CacheState.COMPUTING
        entry = self._entries.get(key)
        if entry is None:
            return CacheState.ABSENT
        return entry.state(self._clock())

    def _evict_locked(self) -> None:
        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            self._counters["evictions"] += 1
            logger.debug("cache_evicted", key=str(key))


def _fail(future: asyncio.Future, exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)
        # Mark retrieved: joiners may not exist
        future.exception()


def _size_of(value: Any) -> int:
    try:
        return len(value)
    except TypeError:
        return 1
