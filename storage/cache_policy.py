"""
Storage - Cache / Revalidation Policy.

============================================================
RESPONSIBILITY
============================================================
Owns TTL bookkeeping for every aggregated query.

- get(key) / set(key, value, ttl) / invalidate(key)
- one fixed TTL per query type
- expiry invalidates the whole entry, never single records
- periodic sweep on a timer task, explicit start/stop

============================================================
KEYS
============================================================
``<query_type>|<param>=<value>|...`` with params sorted by name,
strings lowercased, floats (coordinates) rounded to 2 decimals
and None params omitted.

============================================================
CONCURRENCY
============================================================
Single event loop, single writer. Multi-process deployments
need an external store; not handled here.
============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)

COORDINATE_PRECISION = 2


class QueryType(str, Enum):
    NEWS = "news"
    SPOT_QUOTES = "spot_quotes"
    REFERENCE_RATE = "reference_rate"
    SELIC = "selic"
    WEATHER = "weather"
    CITY_SEARCH = "city_search"
    INTERNATIONAL_PRICES = "international_prices"
    PRECIPITATION = "precipitation"
    DAILY_REPORT = "daily_report"
    COMMODITY_REPORT = "commodity_report"


DEFAULT_TTLS: Dict[str, float] = {
    QueryType.NEWS.value: 3600,
    QueryType.SPOT_QUOTES.value: 3600,
    QueryType.REFERENCE_RATE.value: 3600,
    QueryType.SELIC.value: 86400,
    QueryType.WEATHER.value: 1800,
    QueryType.CITY_SEARCH.value: 86400,
    QueryType.INTERNATIONAL_PRICES.value: 900,
    QueryType.PRECIPITATION.value: 3600,
    QueryType.DAILY_REPORT.value: 6 * 3600,
    QueryType.COMMODITY_REPORT.value: 24 * 3600,
}

FALLBACK_TTL = 300.0


def _normalize_param(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return f"{round(value, COORDINATE_PRECISION):.{COORDINATE_PRECISION}f}"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_normalize_param(v) for v in value))
    return str(value).strip().lower()


def make_cache_key(query_type: "QueryType | str", **params: Any) -> str:
    """
    Composite key of query type and normalized parameters.

    >>> make_cache_key(QueryType.WEATHER, latitude=-12.5432, longitude=-55.7211)
    'weather|latitude=-12.54|longitude=-55.72'
    """
    kind = query_type.value if isinstance(query_type, QueryType) else str(query_type)
    parts = [kind]
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        parts.append(f"{name}={_normalize_param(value)}")
    return "|".join(parts)


def query_type_of(key: str) -> str:
    return key.split("|", 1)[0]


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    expires_at: float

    @property
    def ttl(self) -> float:
        return self.expires_at - self.stored_at

    def age(self, now: float) -> float:
        return max(now - self.stored_at, 0.0)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CachePolicy:
    """
    In-process TTL cache shared by the aggregator and report generator.

    Constructed once at process start; ``start()`` launches the
    sweep timer and ``stop()`` cancels it.
    """

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        ttls: Optional[Dict[str, float]] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._ttls = dict(DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)
        self._entries: Dict[str, CacheEntry] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "sets": 0,
            "invalidations": 0,
            "swept": 0,
        }

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    def ttl_for(self, query_type: "QueryType | str") -> float:
        kind = query_type.value if isinstance(query_type, QueryType) else query_type
        return float(self._ttls.get(kind, FALLBACK_TTL))

    def get(self, key: str) -> Optional[CacheEntry]:
        """Entry for ``key`` if present and within TTL."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug(f"Cache miss: {key}")
            return None

        if entry.is_expired(self._clock.monotonic()):
            del self._entries[key]
            self._stats["expired"] += 1
            self._stats["misses"] += 1
            logger.debug(f"Cache expired: {key}")
            return None

        self._stats["hits"] += 1
        logger.debug(f"Cache hit: {key}")
        return entry

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Store ``value``; ``ttl`` defaults to the key's query type TTL."""
        if ttl is None:
            ttl = self.ttl_for(query_type_of(key))
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = self._clock.monotonic()
        entry = CacheEntry(key=key, value=value, stored_at=now, expires_at=now + ttl)
        self._entries[key] = entry
        self._stats["sets"] += 1
        return entry

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._stats["invalidations"] += 1
        return removed

    def invalidate_prefix(self, query_type: "QueryType | str") -> int:
        """Drop every entry of a query type."""
        kind = query_type.value if isinstance(query_type, QueryType) else query_type
        keys = [k for k in self._entries if query_type_of(k) == kind]
        for key in keys:
            del self._entries[key]
        self._stats["invalidations"] += len(keys)
        return len(keys)

    def sweep(self) -> int:
        """Remove expired entries; returns how many were removed."""
        now = self._clock.monotonic()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._stats["swept"] += len(expired)
            logger.debug(f"Cache sweep removed {len(expired)} entries")
        return len(expired)

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    def start(self, interval_seconds: float = 300.0) -> None:
        """Launch the sweep timer on the running loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop(interval_seconds))
        logger.info(f"Cache sweep started (every {interval_seconds}s)")

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cache sweep stopped")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}")

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "entries": len(self._entries),
            "hit_rate_pct": round(self._stats["hits"] / lookups * 100, 2) if lookups else 0.0,
            "sweeping": self.running,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
