"""
Unit tests for eventscout/utils/integration_helpers/performance.py

Test Coverage:
- CircuitBreaker: failure threshold, rate-limit cooldown, single half-open probe
- TokenBucket: refill and drain
- ProviderGuard / GuardRegistry: guarded calls and per-provider state
- AdaptiveConcurrencyLimiter: pressure-driven limit and the concurrency bound
- performance_monitor: pass-through of results and errors
"""

import asyncio

import pytest

from eventscout.core.exceptions import (
    CircuitOpenError,
    ProviderError,
    ProviderErrorKind,
    QuotaExceeded,
)
from eventscout.utils.integration_helpers.performance import (
    AdaptiveConcurrencyLimiter,
    CircuitBreaker,
    CircuitState,
    GuardRegistry,
    TokenBucket,
    performance_monitor,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestCircuitBreaker:
    """Test circuit state transitions"""

    def test_opens_after_threshold_failures(self, clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown=60, clock=clock)

        for _ in range(2):
            breaker.record_failure(ProviderErrorKind.HTTP_ERROR)
            assert breaker.allow_request()
        breaker.record_failure(ProviderErrorKind.TIMEOUT)

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_rate_limit_opens_at_once_for_retry_after(self, clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown=60, clock=clock)

        breaker.record_failure(ProviderErrorKind.RATE_LIMITED, retry_after=120)

        assert breaker.state == CircuitState.OPEN
        assert breaker.open_for == 120
        clock.advance(90)
        assert not breaker.allow_request()
        clock.advance(30)
        assert breaker.allow_request()

    def test_short_retry_after_keeps_cooldown(self, clock):
        breaker = CircuitBreaker(cooldown=60, clock=clock)

        breaker.record_failure(ProviderErrorKind.RATE_LIMITED, retry_after=5)

        assert breaker.open_for == 60

    def test_half_open_admits_a_single_probe(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=10, clock=clock)
        breaker.record_failure(ProviderErrorKind.HTTP_ERROR)
        clock.advance(10)

        assert breaker.allow_request()
        assert breaker.state == CircuitState.HALF_OPEN
        assert not breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()
        assert breaker.failure_count == 0

    def test_failed_probe_reopens(self, clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown=10, clock=clock)
        breaker.record_failure(ProviderErrorKind.RATE_LIMITED)
        clock.advance(10)
        assert breaker.allow_request()

        breaker.record_failure(ProviderErrorKind.TIMEOUT)

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_released_probe_can_be_retaken(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=10, clock=clock)
        breaker.record_failure(ProviderErrorKind.HTTP_ERROR)
        clock.advance(10)
        assert breaker.allow_request()

        breaker.release_probe()

        assert breaker.allow_request()

    def test_state_report(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown=30, clock=clock)
        breaker.record_failure(ProviderErrorKind.MALFORMED_RESPONSE)

        assert breaker.get_state() == {
            "state": "open",
            "failure_count": 1,
            "failure_threshold": 1,
            "open_for": 30,
        }


class TestTokenBucket:
    """Test the rate limiter"""

    def test_refills_over_time(self, clock):
        bucket = TokenBucket(rate=1.0, capacity=2, clock=clock)

        assert bucket.try_acquire()
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

        clock.advance(1.0)

        assert bucket.try_acquire()

    def test_never_exceeds_capacity(self, clock):
        bucket = TokenBucket(rate=10.0, capacity=2, clock=clock)
        clock.advance(100)

        bucket.try_acquire()

        assert bucket.tokens == pytest.approx(1.0)

    def test_drain_empties_bucket(self, clock):
        bucket = TokenBucket(rate=1.0, capacity=5, clock=clock)

        bucket.drain()

        assert not bucket.try_acquire()


@pytest.mark.asyncio
class TestProviderGuard:
    """Test guarded provider calls"""

    async def test_success_passes_through(self, clock):
        guard = GuardRegistry(clock=clock).get("firecrawl")

        async def search(query):
            return [query]

        assert await guard.call(search, "fintech") == ["fintech"]
        assert guard.breaker.state == CircuitState.CLOSED

    async def test_failures_are_recorded_and_reraised(self, clock):
        guard = GuardRegistry(failure_threshold=2, clock=clock).get("searxng")

        async def broken():
            raise ProviderError("searxng", ProviderErrorKind.HTTP_ERROR, "HTTP 502")

        for _ in range(2):
            with pytest.raises(ProviderError):
                await guard.call(broken)

        with pytest.raises(CircuitOpenError):
            await guard.call(broken)

    async def test_rate_limit_drains_bucket(self, clock):
        guard = GuardRegistry(cooldown=60, clock=clock).get("google_cse")

        async def limited():
            raise QuotaExceeded("google_cse", "HTTP 429", retry_after=120)

        with pytest.raises(QuotaExceeded):
            await guard.call(limited)

        assert guard.bucket.tokens == 0.0
        assert guard.get_state()["open_for"] == 120

    async def test_empty_bucket_refuses_and_releases_probe(self, clock):
        guard = GuardRegistry(failure_threshold=1, cooldown=10, rate=0.0, capacity=1, clock=clock).get("seed")

        async def broken():
            raise ProviderError("seed", ProviderErrorKind.TIMEOUT)

        with pytest.raises(ProviderError):
            await guard.call(broken)
        clock.advance(10)

        with pytest.raises(CircuitOpenError, match="rate limit"):
            guard.acquire()
        assert guard.breaker.state == CircuitState.HALF_OPEN
        assert guard.breaker.allow_request()

    def test_registry_returns_one_guard_per_provider(self, clock):
        registry = GuardRegistry(clock=clock)

        assert registry.get("firecrawl") is registry.get("firecrawl")
        assert registry.get("firecrawl") is not registry.get("searxng")
        assert set(registry.get_states()) == {"firecrawl", "searxng"}


@pytest.mark.asyncio
class TestAdaptiveConcurrencyLimiter:
    """Test pressure-driven concurrency"""

    async def test_high_pressure_shrinks_limit(self, clock):
        limiter = AdaptiveConcurrencyLimiter(8, 2, 8, probe=lambda: (95.0, 10.0), clock=clock)

        async with limiter:
            pass

        assert limiter.limit == 6

    async def test_low_pressure_grows_limit_up_to_maximum(self, clock):
        limiter = AdaptiveConcurrencyLimiter(4, 1, 5, sample_interval=1.0, probe=lambda: (10.0, 10.0), clock=clock)

        for _ in range(3):
            async with limiter:
                pass
            clock.advance(1.0)

        assert limiter.limit == 5

    async def test_pressure_is_sampled_once_per_interval(self, clock):
        samples = []

        def probe():
            samples.append(clock.now)
            return 50.0, 50.0

        limiter = AdaptiveConcurrencyLimiter(4, 1, 8, sample_interval=1.0, probe=probe, clock=clock)
        for _ in range(3):
            async with limiter:
                pass

        assert samples == [0.0]

    async def test_active_calls_never_exceed_limit(self, clock):
        limiter = AdaptiveConcurrencyLimiter(2, 1, 2, probe=lambda: (50.0, 50.0), clock=clock)

        async def work():
            async with limiter:
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(6)))

        assert limiter.peak_active == 2
        assert limiter.active == 0

    def test_limit_is_clamped_to_bounds(self, clock):
        limiter = AdaptiveConcurrencyLimiter(50, 0, 8, clock=clock)

        assert limiter.minimum == 1
        assert limiter.limit == 8


@pytest.mark.asyncio
class TestPerformanceMonitor:
    """Test the timing decorator"""

    async def test_returns_result(self):
        @performance_monitor
        async def answer():
            return 42

        assert await answer() == 42
        assert answer.__name__ == "answer"

    async def test_reraises(self):
        @performance_monitor
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await broken()
