"""Integration helper utilities for external providers.

This package provides the tiered cache, provider guards (circuit breaker and
token bucket), adaptive concurrency and provider health counters.
"""

# Cache utilities
from .cache import (
    CacheEntry,
    CacheManager,
    MemoryTier,
    RedisTier,
    SupabaseTier,
    build_cache_manager,
    create_cache_key,
    namespaced_key,
)

# Health monitoring
from .health import ProviderStats, get_health_status

# Performance and resilience
from .performance import (
    AdaptiveConcurrencyLimiter,
    CircuitBreaker,
    CircuitState,
    GuardRegistry,
    ProviderGuard,
    TokenBucket,
    performance_monitor,
)

__all__ = [
    # Cache
    "CacheEntry",
    "CacheManager",
    "MemoryTier",
    "RedisTier",
    "SupabaseTier",
    "build_cache_manager",
    "create_cache_key",
    "namespaced_key",
    # Health
    "ProviderStats",
    "get_health_status",
    # Performance
    "AdaptiveConcurrencyLimiter",
    "CircuitBreaker",
    "CircuitState",
    "GuardRegistry",
    "ProviderGuard",
    "TokenBucket",
    "performance_monitor",
]
