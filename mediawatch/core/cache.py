"""Aggregation cache with Redis backend and in-memory fallback.

Entries are keyed by scope, a hash of the request parameters and the
calendar day in the configured timezone, so a new day never reads the
previous day's payload. Payloads are stored as JSON in both backends.
"""

import asyncio
import hashlib
import json
import time
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

import redis.asyncio as redis

from mediawatch.core.logging import get_logger
from mediawatch.core.settings import get_settings

logger = get_logger(__name__)


def params_hash(params: Optional[Mapping[str, Any]]) -> str:
    """Stable hash of request parameters (key order does not matter)."""
    encoded = json.dumps(params or {}, sort_keys=True, default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()[:16]


def build_key(scope_type: str, scope_id: Any, params: Optional[Mapping[str, Any]], day: date) -> str:
    return f"dashboard:{scope_type}:{scope_id}:{params_hash(params)}:{day.isoformat()}"


class MemoryCache:
    """Process-local TTL cache."""

    def __init__(self):
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires_at, payload = item
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
            return payload

    async def set(self, key: str, payload: str, ttl: int) -> None:
        async with self._lock:
            now = time.monotonic()
            # Past-day keys are never read again; drop whatever has expired
            expired = [name for name, (expires_at, _) in self._data.items() if expires_at <= now]
            for name in expired:
                del self._data[name]
            self._data[key] = (now + ttl, payload)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class AggregationCache:
    """Cache for dashboard payloads."""

    def __init__(self, backend: Optional[str] = None, redis_url: Optional[str] = None,
                 ttl_seconds: Optional[int] = None, tz: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        settings = get_settings()
        self.backend = backend or settings.cache_backend
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.dashboard_cache_ttl_seconds
        self.tz = ZoneInfo(tz or settings.tz)
        self._clock = clock
        self.redis = None
        self._memory = MemoryCache()
        self._connected = False

    def today(self) -> date:
        """Current calendar day in the configured timezone."""
        now = self._clock() if self._clock else datetime.now(self.tz)
        if now.tzinfo is not None:
            now = now.astimezone(self.tz)
        return now.date()

    def key_for(self, scope_type: str, scope_id: Any, params: Optional[Mapping[str, Any]] = None) -> str:
        return build_key(scope_type, scope_id, params, self.today())

    async def connect(self) -> None:
        """Connect to Redis when configured, falling back to memory if unavailable."""
        if self._connected:
            return
        self._connected = True

        if self.backend != "redis":
            logger.info("Using in-memory aggregation cache")
            return

        try:
            client = redis.from_url(self.redis_url, decode_responses=True)
            await client.ping()
            self.redis = client
            logger.info("Connected to Redis for aggregation cache")
        except Exception as e:
            logger.warning(f"Redis not available, using in-memory cache: {e}")
            self.redis = None

    async def get(self, key: str) -> Optional[Any]:
        await self.connect()
        if self.redis is not None:
            raw = await self.redis.get(key)
        else:
            raw = await self._memory.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.connect()
        raw = json.dumps(value, default=str)
        ttl = ttl or self.ttl_seconds
        if self.redis is not None:
            await self.redis.set(key, raw, ex=ttl)
        else:
            await self._memory.set(key, raw, ttl)

    async def fetch(self, key: str, compute: Callable[[], Awaitable[Any]],
                    ttl: Optional[int] = None) -> Tuple[Any, bool]:
        """
        Return the cached value for ``key`` or compute and store it.

        Returns:
            Tuple of (value, hit)
        """
        cached = await self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached, True

        value = await compute()
        await self.set(key, value, ttl)
        # Serialize through JSON so hits and misses return the same shapes
        return json.loads(json.dumps(value, default=str)), False

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        self._connected = False


# Global cache instance
_cache: Optional[AggregationCache] = None


def get_cache() -> AggregationCache:
    """Get or create the aggregation cache instance."""
    global _cache
    if _cache is None:
        _cache = AggregationCache()
    return _cache
