"""
Shared pytest fixtures for all tests.

The cache only has its memory tier and guards admit every call unless a
test configures them otherwise.
"""

import pytest

from eventscout.utils.integration_helpers import (
    CacheManager,
    GuardRegistry,
    MemoryTier,
    ProviderStats,
)

from .pipeline_test_helpers import make_config, make_request, make_snapshot


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def snapshot():
    return make_snapshot()


@pytest.fixture
def request_de():
    return make_request()


@pytest.fixture
def memory_cache():
    return CacheManager([MemoryTier(max_size=500, default_ttl=600)], default_ttl=600)


@pytest.fixture
def guards():
    return GuardRegistry(failure_threshold=3, cooldown=60.0, rate=1000.0, capacity=1000)


@pytest.fixture
def stats():
    return ProviderStats()
