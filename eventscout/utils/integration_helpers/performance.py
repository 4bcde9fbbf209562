"""Resilience and throughput utilities for external calls.

Provides the circuit breaker and token bucket that guard every provider, a
registry holding one guard per provider for the whole process, an adaptive
concurrency limiter driven by memory and CPU pressure, and a performance
monitoring decorator.

Guards mutate their state only between awaits, so on a single event loop
their updates are atomic without a lock.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from functools import wraps
from typing import Any

import psutil

from eventscout.core.exceptions import (
    CircuitOpenError,
    EventScoutError,
    ProviderError,
    ProviderErrorKind,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker pattern for handling provider failures gracefully.

    Timeouts, HTTP errors and malformed responses count toward the failure
    threshold. A rate-limit response opens the circuit at once for the
    provider's cooldown (or its Retry-After, when longer).
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            cooldown: Seconds to wait before a half-open probe
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock

        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at: float | None = None
        self.open_for = cooldown
        self._probe_in_flight = False

    def allow_request(self) -> bool:
        """Check whether a call may go out now.

        An open circuit turns half-open after its cooldown and admits exactly
        one probe until that probe reports back.
        """
        if self.state == CircuitState.OPEN and self._should_attempt_reset():
            self.state = CircuitState.HALF_OPEN
            self._probe_in_flight = False

        if self.state == CircuitState.OPEN:
            return False

        if self.state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True

        return True

    def release_probe(self) -> None:
        """Give back a half-open probe slot that was never used."""
        if self.state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def record_success(self) -> None:
        """Close the circuit and reset the failure count."""
        if self.state != CircuitState.CLOSED:
            logger.info("Circuit closed after successful probe")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        self._probe_in_flight = False

    def record_failure(
        self,
        kind: ProviderErrorKind,
        retry_after: float | None = None,
    ) -> None:
        """Record a classified failure and potentially open the circuit.

        Args:
            kind: Failure classification
            retry_after: Provider-advertised wait in seconds, if any
        """
        self._probe_in_flight = False

        if kind == ProviderErrorKind.RATE_LIMITED:
            self._open(max(self.cooldown, retry_after or 0.0))
            return

        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._open(self.cooldown)

    def _open(self, duration: float) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()
        self.open_for = duration

    def _should_attempt_reset(self) -> bool:
        return self.opened_at is not None and self._clock() - self.opened_at >= self.open_for

    def get_state(self) -> dict[str, Any]:
        """Get current circuit breaker state.

        Returns:
            Dictionary with circuit breaker state
        """
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "open_for": self.open_for if self.state == CircuitState.OPEN else 0.0,
        }


class TokenBucket:
    """Token bucket rate limiter.

    Refills continuously at ``rate`` tokens per second up to ``capacity``.
    """

    def __init__(self, rate: float, capacity: int, clock: Clock = time.monotonic):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self.tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        """Take tokens if available, without waiting."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def drain(self) -> None:
        """Empty the bucket (used after the provider reports a rate limit)."""
        self._refill()
        self.tokens = 0.0


class ProviderGuard:
    """Circuit breaker plus token bucket for one provider."""

    def __init__(self, provider: str, breaker: CircuitBreaker, bucket: TokenBucket):
        self.provider = provider
        self.breaker = breaker
        self.bucket = bucket

    def acquire(self) -> None:
        """Admit one call or fail fast.

        Raises:
            CircuitOpenError: If the circuit is open or the bucket is empty
        """
        if not self.breaker.allow_request():
            raise CircuitOpenError(self.provider, "circuit open")
        if not self.bucket.try_acquire():
            self.breaker.release_probe()
            raise CircuitOpenError(self.provider, "rate limit")

    def record_success(self) -> None:
        self.breaker.record_success()

    def record_failure(self, error: ProviderError) -> None:
        """Feed a classified provider error into the breaker."""
        self.breaker.record_failure(error.kind, error.retry_after)
        if error.kind == ProviderErrorKind.RATE_LIMITED:
            self.bucket.drain()
        logger.warning(
            "Provider %s failed (%s), circuit=%s",
            self.provider,
            error.kind.value,
            self.breaker.state.value,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Call a provider function through the guard.

        Args:
            func: Async function raising ProviderError on failure
            *args, **kwargs: Function arguments

        Returns:
            Function result

        Raises:
            CircuitOpenError: If the guard refuses the call
            ProviderError: If the call failed (already recorded)
        """
        self.acquire()
        try:
            result = await func(*args, **kwargs)
        except ProviderError as e:
            self.record_failure(e)
            raise
        except asyncio.CancelledError:
            self.breaker.release_probe()
            raise
        self.record_success()
        return result

    def get_state(self) -> dict[str, Any]:
        state = self.breaker.get_state()
        state["tokens"] = round(self.bucket.tokens, 2)
        return state


class GuardRegistry:
    """Process-wide guards, one per provider id."""

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown: float = 60.0,
        rate: float = 5.0,
        capacity: int = 10,
        clock: Clock = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._guards: dict[str, ProviderGuard] = {}

    def get(self, provider: str) -> ProviderGuard:
        """Get or create the guard for a provider."""
        guard = self._guards.get(provider)
        if guard is None:
            guard = ProviderGuard(
                provider,
                CircuitBreaker(self.failure_threshold, self.cooldown, self._clock),
                TokenBucket(self.rate, self.capacity, self._clock),
            )
            self._guards[provider] = guard
        return guard

    def get_states(self) -> dict[str, dict[str, Any]]:
        return {name: guard.get_state() for name, guard in self._guards.items()}


def sample_system_pressure() -> tuple[float, float]:
    """Current memory and CPU usage in percent."""
    return psutil.virtual_memory().percent, psutil.cpu_percent(interval=None)


class AdaptiveConcurrencyLimiter:
    """Semaphore whose limit follows system pressure.

    The limit shrinks by a quarter when memory or CPU is above threshold and
    grows by one when both are comfortably below it, always within
    [minimum, maximum]. Pressure is sampled at most once per interval.
    """

    def __init__(
        self,
        initial: int,
        minimum: int,
        maximum: int,
        memory_threshold: float = 80.0,
        cpu_threshold: float = 90.0,
        sample_interval: float = 1.0,
        probe: Callable[[], tuple[float, float]] = sample_system_pressure,
        clock: Clock = time.monotonic,
    ):
        self.minimum = max(1, minimum)
        self.maximum = max(self.minimum, maximum)
        self.limit = min(self.maximum, max(self.minimum, initial))
        self.memory_threshold = memory_threshold
        self.cpu_threshold = cpu_threshold
        self.sample_interval = sample_interval
        self._probe = probe
        self._clock = clock
        self._last_sample: float | None = None
        self.active = 0
        self.peak_active = 0
        self._condition = asyncio.Condition()

    def _adjust(self) -> None:
        now = self._clock()
        if self._last_sample is not None and now - self._last_sample < self.sample_interval:
            return
        self._last_sample = now
        memory, cpu = self._probe()
        if memory >= self.memory_threshold or cpu >= self.cpu_threshold:
            new_limit = max(self.minimum, self.limit - max(1, self.limit // 4))
        elif memory < self.memory_threshold - 10 and cpu < self.cpu_threshold - 20:
            new_limit = min(self.maximum, self.limit + 1)
        else:
            new_limit = self.limit
        if new_limit != self.limit:
            logger.debug(
                "Concurrency limit %d -> %d (memory=%.1f%%, cpu=%.1f%%)",
                self.limit,
                new_limit,
                memory,
                cpu,
            )
            self.limit = new_limit

    async def acquire(self) -> None:
        async with self._condition:
            self._adjust()
            await self._condition.wait_for(lambda: self.active < self.limit)
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

    async def release(self) -> None:
        async with self._condition:
            self.active -= 1
            self._condition.notify_all()

    async def __aenter__(self) -> "AdaptiveConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()


def performance_monitor(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to monitor function performance.

    Logs execution time and re-raises exceptions.

    Args:
        func: Function to monitor

    Returns:
        Wrapped function with performance monitoring
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        function_name = func.__qualname__

        try:
            result = await func(*args, **kwargs)
            execution_time = time.time() - start_time

            logger.debug("%s executed in %.3fs", function_name, execution_time)
            return result

        except asyncio.CancelledError:
            execution_time = time.time() - start_time
            logger.debug("%s cancelled after %.3fs", function_name, execution_time)
            raise
        except EventScoutError as e:
            execution_time = time.time() - start_time
            logger.error("%s failed after %.3fs: %s", function_name, execution_time, e)
            raise
        except Exception as e:
            execution_time = time.time() - start_time
            logger.exception("%s failed after %.3fs: %s", function_name, execution_time, e)
            raise

    return wrapper
