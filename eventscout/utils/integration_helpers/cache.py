"""Tiered cache for provider results, scores and extracted events.

Tiers are consulted in order: in-process memory, Redis, then the Supabase
table. Values are stored as complete JSON strings carrying their absolute
expiry, so a reader either sees a whole value or nothing. A tier that fails,
or holds a value that cannot be decoded, is logged and treated as a miss.
"""

import asyncio
import hashlib
import json
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError
from supabase import Client, create_client

from eventscout.core.exceptions import CacheUnavailable

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """A cached value and the tier it was read from."""

    key: str
    value: Any
    tier: str
    written_at: float = Field(default_factory=time.time)
    ttl: int


@runtime_checkable
class CacheTier(Protocol):
    """Storage backend for serialized cache values."""

    name: str

    async def get(self, key: str) -> str | None:
        """Return the serialized value or None."""
        ...

    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store a serialized value for ttl seconds."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class MemoryTier:
    """In-process cache with TTL-based expiration and LRU eviction.

    Features:
    - TTL-based expiration
    - Size-based eviction (LRU)
    - Performance metrics
    - Async-safe operations
    """

    name = "memory"

    def __init__(self, max_size: int = 1000, default_ttl: int = 3600):
        """Initialize the memory tier.

        Args:
            max_size: Maximum number of items to cache
            default_ttl: Default time-to-live in seconds
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: dict[str, tuple[str, float]] = {}
        self._access_times: dict[str, float] = {}
        self._lock = asyncio.Lock()

        # Performance metrics
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> str | None:
        """Get an item from the cache.

        Args:
            key: Cache key

        Returns:
            Cached item or None if not found/expired
        """
        async with self._lock:
            if key not in self._cache:
                self.misses += 1
                return None

            item, expiry_time = self._cache[key]
            if time.time() > expiry_time:
                del self._cache[key]
                del self._access_times[key]
                self.misses += 1
                return None

            self._access_times[key] = time.time()
            self.hits += 1
            return item

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set an item in the cache.

        Args:
            key: Cache key
            value: Serialized value
            ttl: Optional TTL override in seconds
        """
        async with self._lock:
            ttl = ttl or self.default_ttl
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_lru()
            self._cache[key] = (value, time.time() + ttl)
            self._access_times[key] = time.time()

    async def delete(self, key: str) -> None:
        """Remove a key if present."""
        async with self._lock:
            self._cache.pop(key, None)
            self._access_times.pop(key, None)

    def _evict_lru(self) -> None:
        if not self._access_times:
            return
        lru_key = min(self._access_times.items(), key=lambda x: x[1])[0]
        del self._cache[lru_key]
        del self._access_times[lru_key]
        self.evictions += 1

    async def clear(self) -> None:
        """Clear the entire cache."""
        async with self._lock:
            self._cache.clear()
            self._access_times.clear()

    async def close(self) -> None:
        """Nothing to release for the memory tier."""
        await self.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get cache performance statistics.

        Returns:
            Dictionary with cache statistics
        """
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests) if total_requests > 0 else 0.0

        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": hit_rate,
            "total_requests": total_requests,
        }


class RedisTier:
    """Shared cache tier backed by Redis."""

    name = "redis"

    def __init__(self, url: str, client: Any | None = None):
        self.url = url
        self.client = client or redis_asyncio.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(self.name, str(e)) from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(self.name, str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailable(self.name, str(e)) from e

    async def close(self) -> None:
        await self.client.aclose()


class SupabaseTier:
    """Durable cache tier stored in a Supabase table.

    Expected columns: ``key`` (primary key), ``value`` (text), ``expires_at``
    (timestamptz).
    """

    name = "supabase"

    def __init__(self, url: str, key: str, table: str, client: Client | None = None):
        self.table = table
        self.client = client or create_client(url, key)

    async def _run(self, func: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except Exception as e:
            # postgrest and httpx raise a variety of exception types
            raise CacheUnavailable(self.name, f"{type(e).__name__}: {e}") from e

    async def get(self, key: str) -> str | None:
        query = (
            self.client.table(self.table)
            .select("value,expires_at")
            .eq("key", key)
            .limit(1)
        )
        result = await self._run(query.execute)
        rows = result.data or []
        if not rows:
            return None
        expires_at = rows[0].get("expires_at")
        if expires_at:
            try:
                expired = datetime.fromisoformat(expires_at) < datetime.now(UTC)
            except (ValueError, TypeError) as e:
                raise CacheUnavailable(self.name, f"unreadable expires_at {expires_at!r}") from e
            if expired:
                return None
        return rows[0].get("value")

    async def set(self, key: str, value: str, ttl: int) -> None:
        expires_at = datetime.now(UTC) + timedelta(seconds=ttl)
        row = {"key": key, "value": value, "expires_at": expires_at.isoformat()}
        query = self.client.table(self.table).upsert(row)
        await self._run(query.execute)

    async def delete(self, key: str) -> None:
        query = self.client.table(self.table).delete().eq("key", key)
        await self._run(query.execute)

    async def close(self) -> None:
        return None


def _decode(raw: str) -> tuple[Any, float]:
    """Split a stored envelope into its value and absolute expiry."""
    payload = json.loads(raw)
    return payload["value"], float(payload["expires_at"])


class CacheManager:
    """Read-through, write-through cache over several tiers."""

    def __init__(self, tiers: list[CacheTier], default_ttl: int = 3600):
        """Initialize the manager.

        Args:
            tiers: Tiers ordered fastest first
            default_ttl: TTL used when callers do not pass one
        """
        self.tiers = tiers
        self.default_ttl = default_ttl
        self.tier_errors: dict[str, int] = {tier.name: 0 for tier in tiers}

    async def get(self, key: str) -> Any | None:
        """Get a value, back-filling faster tiers on a slower-tier hit.

        Args:
            key: Cache key

        Returns:
            Deserialized value, or None on a miss
        """
        entry = await self.get_entry(key)
        return entry.value if entry else None

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Get a value together with the tier that answered.

        Values that cannot be decoded are evicted from their tier and count
        as a tier error, never as a hit.
        """
        for position, tier in enumerate(self.tiers):
            try:
                raw = await tier.get(key)
            except CacheUnavailable as e:
                self._record_error(tier.name, e)
                continue
            if raw is None:
                continue
            try:
                value, expires_at = _decode(raw)
            except (ValueError, TypeError, KeyError) as e:
                self._record_error(tier.name, CacheUnavailable(tier.name, f"unreadable value for {key}: {e}"))
                await self._safe_delete(tier, key)
                continue
            remaining = int(expires_at - time.time())
            if remaining <= 0:
                continue
            for faster in self.tiers[:position]:
                await self._safe_set(faster, key, raw, remaining)
            return CacheEntry(key=key, value=value, tier=tier.name, ttl=remaining)
        return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Serialize once and write the value to every tier.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Optional TTL override in seconds
        """
        ttl = ttl or self.default_ttl
        raw = json.dumps({"value": value, "expires_at": time.time() + ttl}, default=str)
        for tier in self.tiers:
            await self._safe_set(tier, key, raw, ttl)

    async def invalidate(self, key: str) -> None:
        """Remove a key from every tier."""
        for tier in self.tiers:
            await self._safe_delete(tier, key)

    async def close(self) -> None:
        """Close every tier."""
        for tier in self.tiers:
            try:
                await tier.close()
            except CacheUnavailable as e:
                self._record_error(tier.name, e)

    async def _safe_set(self, tier: CacheTier, key: str, raw: str, ttl: int) -> None:
        try:
            await tier.set(key, raw, ttl)
        except CacheUnavailable as e:
            self._record_error(tier.name, e)

    async def _safe_delete(self, tier: CacheTier, key: str) -> None:
        try:
            await tier.delete(key)
        except CacheUnavailable as e:
            self._record_error(tier.name, e)

    def _record_error(self, tier_name: str, error: Exception) -> None:
        self.tier_errors[tier_name] = self.tier_errors.get(tier_name, 0) + 1
        logger.warning("Cache tier %s unavailable, treating as miss: %s", tier_name, error)

    def get_stats(self) -> dict[str, Any]:
        """Get per-tier statistics."""
        stats: dict[str, Any] = {"tiers": [tier.name for tier in self.tiers]}
        for tier in self.tiers:
            if isinstance(tier, MemoryTier):
                stats["memory"] = tier.get_stats()
        stats["tier_errors"] = dict(self.tier_errors)
        return stats


def create_cache_key(*args: Any, **kwargs: Any) -> str:
    """Create a deterministic cache key from arguments.

    Args:
        *args: Positional arguments
        **kwargs: Keyword arguments

    Returns:
        SHA-256 hash of the arguments as cache key
    """
    key_parts = []

    for arg in args:
        if isinstance(arg, str | int | float | bool):
            key_parts.append(str(arg))
        else:
            key_parts.append(json.dumps(arg, sort_keys=True, default=str))

    for key, value in sorted(kwargs.items()):
        if isinstance(value, str | int | float | bool):
            key_parts.append(f"{key}={value}")
        else:
            key_parts.append(f"{key}={json.dumps(value, sort_keys=True, default=str)}")

    key_string = "|".join(key_parts)
    return hashlib.sha256(key_string.encode()).hexdigest()


def namespaced_key(namespace: str, *args: Any, **kwargs: Any) -> str:
    """Prefix a hashed key with a readable namespace (``provider:...``)."""
    return f"{namespace}:{create_cache_key(*args, **kwargs)}"


def build_cache_manager(settings: Any) -> CacheManager:
    """Build the tier stack configured in settings.

    Args:
        settings: Application settings

    Returns:
        CacheManager with memory plus any configured remote tiers
    """
    tiers: list[CacheTier] = [
        MemoryTier(max_size=settings.memory_cache_size, default_ttl=settings.query_cache_ttl),
    ]
    if settings.redis_url:
        tiers.append(RedisTier(settings.redis_url))
        logger.info("✓ Redis cache tier enabled")
    if settings.has_supabase_config():
        tiers.append(
            SupabaseTier(
                settings.supabase_url,
                settings.supabase_service_key,
                settings.cache_table,
            ),
        )
        logger.info("✓ Supabase cache tier enabled (table=%s)", settings.cache_table)
    return CacheManager(tiers, default_ttl=settings.query_cache_ttl)
