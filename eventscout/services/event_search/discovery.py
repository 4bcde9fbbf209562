"""Candidate discovery across the provider chain.

Each query variant walks the chain (firecrawl, google_cse, searxng, seed by
default) and stops at the first provider that returns results. Variants run
concurrently under an adaptive limiter and never short-circuit each other.
The answer of the whole chain is cached per variant. Every provider call
goes through the provider cache first, then through the provider
guard. A failing provider degrades to the next one and never raises out of
discovery.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from pydantic import ValidationError

from eventscout.config.store import ConfigSnapshot
from eventscout.core.exceptions import CircuitOpenError, ProviderError, ProviderTimeout
from eventscout.services.event_models import (
    Candidate,
    PassType,
    QueryVariant,
    SearchHit,
    SearchRequest,
    StageLog,
)
from eventscout.utils.integration_helpers import (
    AdaptiveConcurrencyLimiter,
    CacheManager,
    GuardRegistry,
    ProviderStats,
    namespaced_key,
    performance_monitor,
)
from eventscout.utils.url import canonicalize_url, extract_host, is_aggregator_host

from .config import EventSearchConfig
from .providers import SearchOptions, SearchProvider
from .query_builder import resolve_locale

logger = logging.getLogger(__name__)


@dataclass
class VariantOutcome:
    """Which provider answered a variant and with what."""

    variant: QueryVariant
    provider: str | None = None
    hits: list[SearchHit] = field(default_factory=list)


@dataclass
class DiscoveryResult:
    """Deduplicated candidates plus per-variant outcomes."""

    candidates: list[Candidate]
    outcomes: list[VariantOutcome]
    log: StageLog


def _normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


class DiscoveryEngine:
    """Runs query variants against the provider chain."""

    def __init__(
        self,
        config: EventSearchConfig,
        providers: dict[str, SearchProvider],
        guards: GuardRegistry,
        stats: ProviderStats,
        cache: CacheManager | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Event search configuration (chain, timeouts, concurrency)
            providers: Providers keyed by id
            guards: Process-wide provider guards
            stats: Process-wide provider counters
            cache: Optional tiered cache for provider results
        """
        self.config = config
        self.providers = providers
        self.guards = guards
        self.stats = stats
        self.cache = cache

    def active_chain(self, snapshot: ConfigSnapshot) -> list[SearchProvider]:
        """Providers that are in the chain, switched on and configured, in order."""
        chain = []
        for name in self.config.provider_chain:
            provider = self.providers.get(name)
            if provider is None or not snapshot.providers.is_enabled(name):
                continue
            if not provider.is_configured():
                logger.debug("Provider %s not configured, skipping", name)
                continue
            chain.append(provider)
        return chain

    @performance_monitor
    async def discover(
        self,
        variants: list[QueryVariant],
        request: SearchRequest,
        snapshot: ConfigSnapshot,
        skip_urls: set[str] | None = None,
        pass_type: PassType = PassType.INITIAL,
    ) -> DiscoveryResult:
        """Discover candidates for all variants.

        Args:
            variants: Query variants in priority order
            request: Search request (region, excluded hosts)
            snapshot: Configuration snapshot for this run
            skip_urls: Canonical URLs already handled in an earlier pass
            pass_type: Pass these candidates belong to

        Returns:
            DiscoveryResult with at most ``max_candidates`` unique candidates
        """
        start = time.monotonic()
        chain = self.active_chain(snapshot)
        options = SearchOptions(
            region=request.region,
            locale=resolve_locale(request),
            window=request.window,
            topic=request.topic,
            seed_urls=snapshot.seed_urls,
        )
        limiter = AdaptiveConcurrencyLimiter(
            initial=self.config.discovery_concurrency,
            minimum=self.config.discovery_min_concurrency,
            maximum=self.config.discovery_max_concurrency,
            memory_threshold=self.config.memory_pressure_percent,
        )

        if not chain:
            logger.warning("No search providers available for discovery")
            outcomes = [VariantOutcome(variant=v) for v in variants]
        else:
            outcomes = await asyncio.gather(
                *(self._run_variant(variant, chain, options, limiter) for variant in variants),
            )

        candidates = self._merge(
            outcomes,
            snapshot,
            skip_urls or set(),
            set(request.caller_profile.excluded_hosts),
        )

        answered = [o for o in outcomes if o.provider]
        providers_used: dict[str, int] = {}
        for outcome in answered:
            providers_used[outcome.provider] = providers_used.get(outcome.provider, 0) + 1

        log = StageLog(
            stage="discovery",
            pass_type=pass_type,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            input_count=len(variants),
            output_count=len(candidates),
            detail={
                "chain": [p.name for p in chain],
                "variants_answered": len(answered),
                "providers_used": providers_used,
                "peak_concurrency": limiter.peak_active,
            },
        )
        logger.info(
            "Discovery (%s): %d/%d variants answered, %d candidates",
            pass_type.value,
            len(answered),
            len(variants),
            len(candidates),
        )
        return DiscoveryResult(candidates=candidates, outcomes=list(outcomes), log=log)

    async def _run_variant(
        self,
        variant: QueryVariant,
        chain: list[SearchProvider],
        options: SearchOptions,
        limiter: AdaptiveConcurrencyLimiter,
    ) -> VariantOutcome:
        key = namespaced_key(
            "variant",
            ",".join(p.name for p in chain),
            _normalize_query(variant.query),
            (options.region or "").lower(),
        )
        cached = await self._cached_outcome(key, variant)
        if cached is not None:
            return cached

        outcome = VariantOutcome(variant=variant)
        async with limiter:
            for provider in chain:
                hits = await self._call_provider(provider, variant, options)
                if hits:
                    outcome = VariantOutcome(variant=variant, provider=provider.name, hits=hits)
                    break
            else:
                logger.debug("Variant %s exhausted the provider chain", variant.tag)

        # Written even when a provider failed on the way.
        if self.cache is not None:
            await self.cache.set(
                key,
                {"provider": outcome.provider, "hits": [hit.model_dump() for hit in outcome.hits]},
                ttl=self.config.query_cache_ttl,
            )
        return outcome

    async def _cached_outcome(self, key: str, variant: QueryVariant) -> VariantOutcome | None:
        if self.cache is None:
            return None
        cached = await self.cache.get(key)
        if cached is None:
            return None
        try:
            hits = [SearchHit.model_validate(hit) for hit in cached["hits"]]
            provider = cached["provider"]
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Discarding unreadable variant cache entry %s: %s", key, e)
            await self.cache.invalidate(key)
            return None
        if provider:
            self.stats.record_cache_hit(provider)
        return VariantOutcome(variant=variant, provider=provider, hits=hits)

    async def _call_provider(
        self,
        provider: SearchProvider,
        variant: QueryVariant,
        options: SearchOptions,
    ) -> list[SearchHit]:
        """Cache, then guard, then provider. Any failure yields an empty list."""
        key = namespaced_key(
            "provider",
            provider.name,
            _normalize_query(variant.query),
            (options.region or "").lower(),
        )
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    hits = [SearchHit.model_validate(hit) for hit in cached]
                except (TypeError, ValidationError) as e:
                    logger.warning("Discarding unreadable provider cache entry %s: %s", key, e)
                    await self.cache.invalidate(key)
                else:
                    self.stats.record_cache_hit(provider.name)
                    return hits

        guard = self.guards.get(provider.name)
        started = time.monotonic()
        try:
            hits = await guard.call(self._search_with_timeout, provider, variant, options)
        except CircuitOpenError as e:
            self.stats.record_skip(provider.name)
            logger.info("Skipping %s for variant %s: %s", provider.name, variant.tag, e.reason)
            return []
        except ProviderError as e:
            self.stats.record_failure(provider.name, e.kind, time.monotonic() - started)
            logger.warning("Provider %s failed for variant %s: %s", provider.name, variant.tag, e)
            return []

        self.stats.record_success(provider.name, time.monotonic() - started)
        if self.cache is not None:
            await self.cache.set(
                key,
                [hit.model_dump() for hit in hits],
                ttl=self.config.query_cache_ttl,
            )
        return hits

    async def _search_with_timeout(
        self,
        provider: SearchProvider,
        variant: QueryVariant,
        options: SearchOptions,
    ) -> list[SearchHit]:
        try:
            return await asyncio.wait_for(
                provider.search(variant, options),
                timeout=self.config.provider_timeout,
            )
        except TimeoutError as e:
            msg = f"{provider.name} did not answer within {self.config.provider_timeout}s"
            raise ProviderTimeout(provider.name, msg) from e

    def _merge(
        self,
        outcomes: list[VariantOutcome],
        snapshot: ConfigSnapshot,
        skip_urls: set[str],
        excluded_hosts: set[str],
    ) -> list[Candidate]:
        """Deduplicate by canonical URL in variant order, then provider rank order."""
        max_candidates = snapshot.thresholds.max_candidates
        excluded = {h.lower().removeprefix("www.") for h in excluded_hosts}
        seen: set[str] = set()
        candidates: list[Candidate] = []

        for outcome in outcomes:
            for hit in outcome.hits:
                url = canonicalize_url(hit.url)
                if not url or url in seen or url in skip_urls:
                    continue
                host = extract_host(url)
                if not host or host in excluded:
                    continue
                seen.add(url)
                candidates.append(
                    Candidate(
                        url=url,
                        host=host,
                        discovered_via=outcome.provider or "",
                        raw_score=hit.score,
                        title=hit.title,
                        snippet=hit.snippet,
                        query_tag=outcome.variant.tag,
                        discovery_order=len(candidates),
                        is_aggregator=is_aggregator_host(host, snapshot.aggregator_domains),
                    ),
                )
                if len(candidates) >= max_candidates:
                    return candidates
        return candidates
