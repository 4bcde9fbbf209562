"""Provider health counters and status reporting.

Counts successes, failures by kind and latency per provider so the status
tool and the result metadata can show which providers served a request.
"""

import logging
import time
from collections import defaultdict
from typing import Any

from eventscout.core.exceptions import ProviderErrorKind

logger = logging.getLogger(__name__)


class ProviderStats:
    """Per-provider call counters for the life of the process."""

    def __init__(self) -> None:
        """Initialize empty counters."""
        self.calls: dict[str, int] = defaultdict(int)
        self.successes: dict[str, int] = defaultdict(int)
        self.failures: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.skipped: dict[str, int] = defaultdict(int)
        self.cache_hits: dict[str, int] = defaultdict(int)
        self.total_latency: dict[str, float] = defaultdict(float)
        self.last_success: dict[str, float] = {}

    def record_success(self, provider: str, latency: float) -> None:
        """Record a successful call and its latency in seconds."""
        self.calls[provider] += 1
        self.successes[provider] += 1
        self.total_latency[provider] += latency
        self.last_success[provider] = time.time()

    def record_failure(self, provider: str, kind: ProviderErrorKind, latency: float) -> None:
        """Record a failed call by failure kind."""
        self.calls[provider] += 1
        self.failures[provider][kind.value] += 1
        self.total_latency[provider] += latency

    def record_skip(self, provider: str) -> None:
        """Record a call refused by the provider guard."""
        self.skipped[provider] += 1

    def record_cache_hit(self, provider: str) -> None:
        """Record a provider result served from cache."""
        self.cache_hits[provider] += 1

    def snapshot(self) -> dict[str, Any]:
        """Get counters for every provider seen so far.

        Returns:
            Mapping of provider id to its counters and average latency
        """
        providers = set(self.calls) | set(self.skipped) | set(self.cache_hits)
        report: dict[str, Any] = {}
        for provider in sorted(providers):
            calls = self.calls.get(provider, 0)
            report[provider] = {
                "calls": calls,
                "successes": self.successes.get(provider, 0),
                "failures": dict(self.failures.get(provider, {})),
                "skipped": self.skipped.get(provider, 0),
                "cache_hits": self.cache_hits.get(provider, 0),
                "avg_latency_ms": round(
                    (self.total_latency.get(provider, 0.0) / calls) * 1000, 1
                )
                if calls
                else 0.0,
            }
        return report

    def diff(self, before: dict[str, Any]) -> dict[str, Any]:
        """Counters accumulated since an earlier snapshot."""
        now = self.snapshot()
        delta: dict[str, Any] = {}
        for provider, counters in now.items():
            prior = before.get(provider, {})
            changed = {
                key: counters[key] - prior.get(key, 0)
                for key in ("calls", "successes", "skipped", "cache_hits")
            }
            failures = {
                kind: count - prior.get("failures", {}).get(kind, 0)
                for kind, count in counters["failures"].items()
            }
            changed["failures"] = {k: v for k, v in failures.items() if v}
            if any(changed[key] for key in ("calls", "skipped", "cache_hits")):
                delta[provider] = changed
        return delta


def get_health_status(
    guard_states: dict[str, dict[str, Any]],
    provider_stats: dict[str, Any],
) -> dict[str, Any]:
    """Summarize provider health.

    Args:
        guard_states: Circuit and bucket state per provider
        provider_stats: Counters per provider

    Returns:
        Health status report
    """
    open_circuits = [name for name, state in guard_states.items() if state["state"] != "closed"]
    if not guard_states:
        overall = "idle"
    elif not open_circuits:
        overall = "fully_operational"
    elif len(open_circuits) < len(guard_states):
        overall = "partially_operational"
    else:
        overall = "degraded"

    return {
        "overall_status": overall,
        "timestamp": time.time(),
        "open_circuits": open_circuits,
        "circuits": guard_states,
        "providers": provider_stats,
    }
