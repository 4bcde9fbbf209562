"""
Unit tests for eventscout/utils/integration_helpers/cache.py

Test Coverage:
- MemoryTier: TTL expiry, LRU eviction, statistics
- CacheManager: read-through back-fill, write-through, failing tiers as misses
- RedisTier / SupabaseTier: backend errors surface as CacheUnavailable
- namespaced_key(): deterministic keys
"""

import itertools
import json
import time
from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import RedisError

from eventscout.core.exceptions import CacheUnavailable
from eventscout.utils.integration_helpers.cache import (
    CacheManager,
    MemoryTier,
    RedisTier,
    SupabaseTier,
    build_cache_manager,
    namespaced_key,
)


class DictTier:
    """Remote tier stand-in keeping values in a dict."""

    def __init__(self, name="redis"):
        self.name = name
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl):
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self.data.pop(key, None)

    async def close(self):
        return None


def failing_tier(name="redis"):
    tier = MagicMock()
    tier.name = name
    tier.get = AsyncMock(side_effect=CacheUnavailable(name, "connection refused"))
    tier.set = AsyncMock(side_effect=CacheUnavailable(name, "connection refused"))
    tier.delete = AsyncMock(side_effect=CacheUnavailable(name, "connection refused"))
    tier.close = AsyncMock()
    return tier


def envelope(value, ttl=600):
    return json.dumps({"value": value, "expires_at": time.time() + ttl})


@pytest.mark.asyncio
class TestMemoryTier:
    """Test the in-process tier"""

    async def test_set_and_get(self):
        tier = MemoryTier()

        await tier.set("k", '{"a": 1}')

        assert await tier.get("k") == '{"a": 1}'
        assert await tier.get("missing") is None
        stats = tier.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    async def test_expired_entries_are_misses(self):
        with patch("eventscout.utils.integration_helpers.cache.time") as mock_time:
            mock_time.time.return_value = 1000.0
            tier = MemoryTier(default_ttl=60)
            await tier.set("k", "v")

            mock_time.time.return_value = 1061.0

            assert await tier.get("k") is None
            assert tier.get_stats()["size"] == 0

    async def test_least_recently_used_entry_is_evicted(self):
        clock = itertools.count(1000)
        with patch("eventscout.utils.integration_helpers.cache.time") as mock_time:
            mock_time.time.side_effect = lambda: float(next(clock))
            tier = MemoryTier(max_size=2)
            await tier.set("a", "1")
            await tier.set("b", "2")
            await tier.get("a")

            await tier.set("c", "3")

            assert await tier.get("b") is None
            assert await tier.get("a") == "1"
            assert await tier.get("c") == "3"
            assert tier.evictions == 1


@pytest.mark.asyncio
class TestCacheManager:
    """Test the tiered manager"""

    async def test_slower_tier_hit_backfills_faster_tiers(self):
        memory, remote = MemoryTier(), DictTier()
        manager = CacheManager([memory, remote])
        remote.data["k"] = envelope({"urls": ["https://a.de"]})

        first = await manager.get_entry("k")
        second = await manager.get_entry("k")

        assert first.value == {"urls": ["https://a.de"]}
        assert first.tier == "redis"
        assert second.tier == "memory"

    async def test_set_writes_every_tier(self):
        memory, remote = MemoryTier(), DictTier()
        manager = CacheManager([memory, remote])

        await manager.set("k", {"day": date(2026, 3, 12)})

        assert json.loads(remote.data["k"])["value"] == {"day": "2026-03-12"}
        assert await manager.get("k") == {"day": "2026-03-12"}

    async def test_empty_list_is_a_hit(self):
        manager = CacheManager([MemoryTier()])

        await manager.set("k", [])
        entry = await manager.get_entry("k")

        assert entry is not None
        assert entry.value == []

    async def test_failing_tier_is_treated_as_a_miss(self):
        memory = MemoryTier()
        manager = CacheManager([memory, failing_tier()])

        assert await manager.get("k") is None
        await manager.set("k", {"a": 1})

        assert await manager.get("k") == {"a": 1}
        assert manager.tier_errors["redis"] == 2
        assert manager.get_stats()["tier_errors"] == {"memory": 0, "redis": 2}

    async def test_invalidate_removes_from_every_tier(self):
        memory, remote = MemoryTier(), DictTier()
        manager = CacheManager([memory, remote])
        await manager.set("k", 1)

        await manager.invalidate("k")

        assert await manager.get("k") is None
        assert remote.data == {}

    @pytest.mark.parametrize(
        "raw",
        ['{"truncated": ', '{"urls": ["https://a.de"]}', '{"value": 1, "expires_at": "soon"}', "[1, 2]"],
    )
    async def test_unreadable_value_is_an_evicted_miss(self, raw):
        remote = DictTier()
        remote.data["provider:abc"] = raw
        manager = CacheManager([MemoryTier(), remote])

        assert await manager.get("provider:abc") is None

        assert "provider:abc" not in remote.data
        assert manager.tier_errors["redis"] == 1

    async def test_unreadable_value_falls_through_to_next_tier(self):
        memory, remote = DictTier("memory"), DictTier()
        memory.data["k"] = "{broken"
        remote.data["k"] = envelope({"a": 1})
        manager = CacheManager([memory, remote])

        entry = await manager.get_entry("k")

        assert entry.value == {"a": 1}
        assert entry.tier == "redis"
        assert json.loads(memory.data["k"])["value"] == {"a": 1}

    async def test_backfill_keeps_remaining_lifetime(self):
        memory, remote = DictTier("memory"), DictTier()
        remote.data["k"] = envelope("v", ttl=90)
        manager = CacheManager([memory, remote], default_ttl=3600)

        entry = await manager.get_entry("k")

        assert 0 < memory.ttls["k"] <= 90
        assert entry.ttl == memory.ttls["k"]

    async def test_expired_envelope_is_a_miss(self):
        remote = DictTier()
        remote.data["k"] = json.dumps({"value": 1, "expires_at": time.time() - 5})
        manager = CacheManager([remote])

        assert await manager.get("k") is None
        assert manager.tier_errors["redis"] == 0

    def test_build_with_memory_only(self):
        settings = SimpleNamespace(
            memory_cache_size=10,
            query_cache_ttl=60,
            redis_url=None,
            has_supabase_config=lambda: False,
        )

        manager = build_cache_manager(settings)

        assert [tier.name for tier in manager.tiers] == ["memory"]
        assert manager.default_ttl == 60


@pytest.mark.asyncio
class TestRemoteTiers:
    """Test backend error mapping"""

    async def test_redis_errors_raise_cache_unavailable(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=RedisError("connection reset"))
        tier = RedisTier("redis://localhost:6379/0", client=client)

        with pytest.raises(CacheUnavailable):
            await tier.get("k")

    async def test_redis_set_passes_ttl(self):
        client = MagicMock()
        client.set = AsyncMock()
        tier = RedisTier("redis://localhost:6379/0", client=client)

        await tier.set("k", "v", 120)

        client.set.assert_awaited_once_with("k", "v", ex=120)

    def _supabase(self, rows=None, error=None):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        if error is not None:
            query.execute.side_effect = error
        else:
            query.execute.return_value = SimpleNamespace(data=rows)
        return SupabaseTier("https://db.supabase.co", "key", "eventscout_cache", client=client)

    async def test_supabase_returns_live_rows(self):
        expires = (datetime.now(UTC) + timedelta(hours=1)).isoformat()
        tier = self._supabase([{"value": '{"a": 1}', "expires_at": expires}])

        assert await tier.get("k") == '{"a": 1}'

    async def test_supabase_ignores_expired_rows(self):
        expires = (datetime.now(UTC) - timedelta(hours=1)).isoformat()
        tier = self._supabase([{"value": '{"a": 1}', "expires_at": expires}])

        assert await tier.get("k") is None

    async def test_supabase_unreadable_expiry_raises_cache_unavailable(self):
        tier = self._supabase([{"value": '{"a": 1}', "expires_at": "next tuesday"}])

        with pytest.raises(CacheUnavailable, match="expires_at"):
            await tier.get("k")

    async def test_supabase_errors_raise_cache_unavailable(self):
        tier = self._supabase(error=ConnectionError("refused"))

        with pytest.raises(CacheUnavailable):
            await tier.get("k")


class TestNamespacedKey:
    """Test key construction"""

    def test_keys_are_deterministic_and_prefixed(self):
        first = namespaced_key("provider", "firecrawl", "fintech konferenz", region="DE", window=["2026"])
        second = namespaced_key("provider", "firecrawl", "fintech konferenz", window=["2026"], region="DE")

        assert first == second
        assert first.startswith("provider:")

    def test_different_inputs_differ(self):
        assert namespaced_key("provider", "firecrawl", "a") != namespaced_key("provider", "searxng", "a")
        assert namespaced_key("provider", "a") != namespaced_key("score", "a")
