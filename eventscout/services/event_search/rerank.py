"""Aggregator filtering and semantic reranking of discovered candidates.

Aggregator and listing hosts are dropped first. If too few candidates are
left, the best aggregators are kept as a backstop. The remaining pool is
reranked by Voyage AI against an instruction built from topic, region and
window, small biases are added for country TLDs and speaker/agenda paths, and
the top ``rerank_top_k`` survive. Without a reranker (or when it fails) the
raw provider scores are used instead.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

import voyageai

from eventscout.config.store import ConfigSnapshot
from eventscout.config.templates import COUNTRY_DATA, resolve_country
from eventscout.core.exceptions import (
    CircuitOpenError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeout,
)
from eventscout.services.event_models import Candidate, PassType, SearchRequest, StageLog
from eventscout.utils.integration_helpers import (
    CacheManager,
    GuardRegistry,
    ProviderStats,
    namespaced_key,
    performance_monitor,
)
from eventscout.utils.url import has_country_tld, has_speaker_path

logger = logging.getLogger(__name__)

RERANK_PROVIDER = "voyage"


class Reranker(Protocol):
    """Scores documents against a query."""

    async def rerank(self, query: str, documents: list[str], top_k: int) -> list[tuple[int, float]]:
        """Return (document index, relevance score) pairs, best first.

        Raises:
            ProviderError: If the rerank call failed
        """
        ...


class VoyageReranker:
    """Reranker backed by the Voyage AI rerank endpoint."""

    name = RERANK_PROVIDER

    def __init__(self, api_key: str, model: str = "rerank-2", client: voyageai.AsyncClient | None = None):
        self.model = model
        self.client = client or voyageai.AsyncClient(api_key=api_key)

    async def rerank(self, query: str, documents: list[str], top_k: int) -> list[tuple[int, float]]:
        try:
            result = await self.client.rerank(
                query=query,
                documents=documents,
                model=self.model,
                top_k=min(top_k, len(documents)),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ProviderError(
                self.name,
                self.classify_error(e),
                f"Voyage rerank failed: {type(e).__name__}: {e}",
            ) from e

        return [(int(item.index), float(item.relevance_score)) for item in result.results]

    def classify_error(self, exc: BaseException) -> ProviderErrorKind:
        """Classify Voyage client errors by type name."""
        error_type = type(exc).__name__
        if isinstance(exc, TimeoutError) or "Timeout" in error_type:
            return ProviderErrorKind.TIMEOUT
        if "RateLimit" in error_type:
            return ProviderErrorKind.RATE_LIMITED
        if isinstance(exc, ValueError | KeyError | TypeError | AttributeError):
            return ProviderErrorKind.MALFORMED_RESPONSE
        return ProviderErrorKind.HTTP_ERROR


@dataclass
class RerankResult:
    """Survivors of the rerank gate plus its stage log."""

    candidates: list[Candidate]
    log: StageLog


def build_instruction(request: SearchRequest) -> str:
    """Rerank query describing the event being looked for."""
    region = request.region or "any country"
    return (
        f"A page for one specific {request.topic} event (conference, summit, forum, "
        f"workshop or seminar) taking place in {region} between "
        f"{request.date_from.isoformat()} and {request.date_to.isoformat()}, "
        f"with an agenda or a list of speakers. Not a listing, news article or job page."
    )


def _document(candidate: Candidate) -> str:
    return f"{candidate.title}\n{candidate.snippet}\n{candidate.url}"


class RerankGate:
    """Filters aggregators, reranks semantically and keeps the top candidates."""

    def __init__(
        self,
        reranker: Reranker | None,
        guards: GuardRegistry,
        stats: ProviderStats,
        cache: CacheManager | None = None,
        timeout: float = 6.0,
        score_cache_ttl: int = 7 * 24 * 3600,
    ) -> None:
        """Initialize the gate.

        Args:
            reranker: Semantic reranker, or None to rank by raw scores only
            guards: Process-wide provider guards
            stats: Process-wide provider counters
            cache: Optional cache for rerank scores
            timeout: Seconds before a rerank call is abandoned
            score_cache_ttl: TTL for cached rerank scores
        """
        self.reranker = reranker
        self.guards = guards
        self.stats = stats
        self.cache = cache
        self.timeout = timeout
        self.score_cache_ttl = score_cache_ttl

    @performance_monitor
    async def rerank(
        self,
        candidates: list[Candidate],
        request: SearchRequest,
        snapshot: ConfigSnapshot,
        pass_type: PassType = PassType.INITIAL,
    ) -> RerankResult:
        """Filter and rerank candidates.

        Args:
            candidates: Deduplicated candidates in discovery order
            request: Search request (topic, region, window)
            snapshot: Configuration snapshot for this run
            pass_type: Pass these candidates belong to

        Returns:
            At most ``rerank_top_k`` candidates, best first, ties by discovery order
        """
        start = time.monotonic()
        thresholds = snapshot.thresholds

        regular = [c for c in candidates if not c.is_aggregator]
        aggregators = sorted(
            (c for c in candidates if c.is_aggregator),
            key=lambda c: (-c.raw_score, c.discovery_order),
        )
        backstop = aggregators[: max(0, thresholds.rerank_min_candidates - len(regular))]
        if backstop:
            logger.info(
                "Only %d non-aggregator candidates, keeping %d aggregators as backstop",
                len(regular),
                len(backstop),
            )

        pool = sorted(regular + backstop, key=lambda c: c.discovery_order)
        pool = pool[: thresholds.rerank_max_input]

        scores, method = await self._semantic_scores(pool, request)

        country = resolve_country(request.region)
        tld = COUNTRY_DATA[country]["tld"] if country else None
        tld_hits = 0
        path_hits = 0
        scored: list[Candidate] = []
        for candidate in pool:
            score = scores.get(candidate.url, candidate.raw_score)
            if has_country_tld(candidate.host, tld):
                score += thresholds.tld_bonus
                tld_hits += 1
            if has_speaker_path(candidate.url):
                score += thresholds.speaker_path_bonus
                path_hits += 1
            scored.append(candidate.model_copy(update={"rerank_score": round(score, 4)}))

        scored.sort(key=lambda c: (-(c.rerank_score or 0.0), c.discovery_order))
        survivors = scored[: thresholds.rerank_top_k]

        log = StageLog(
            stage="rerank",
            pass_type=pass_type,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            input_count=len(candidates),
            output_count=len(survivors),
            detail={
                "method": method,
                "aggregators_dropped": len(aggregators) - len(backstop),
                "backstop_kept": len(backstop),
                "tld_bonus_hits": tld_hits,
                "speaker_path_hits": path_hits,
            },
        )
        logger.info(
            "Rerank (%s, %s): %d -> %d candidates",
            pass_type.value,
            method,
            len(candidates),
            len(survivors),
        )
        return RerankResult(candidates=survivors, log=log)

    async def _semantic_scores(
        self,
        pool: list[Candidate],
        request: SearchRequest,
    ) -> tuple[dict[str, float], str]:
        """Rerank scores keyed by candidate URL, and how they were obtained."""
        if not pool or self.reranker is None:
            return {}, "raw_score"

        instruction = build_instruction(request)
        urls = [c.url for c in pool]
        key = namespaced_key("rerank", instruction, sorted(urls))
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                self.stats.record_cache_hit(RERANK_PROVIDER)
                return {url: float(score) for url, score in cached.items()}, "cache"

        guard = self.guards.get(RERANK_PROVIDER)
        started = time.monotonic()
        try:
            ranked = await guard.call(
                self._rerank_with_timeout,
                instruction,
                [_document(c) for c in pool],
                len(pool),
            )
        except CircuitOpenError as e:
            self.stats.record_skip(RERANK_PROVIDER)
            logger.info("Rerank skipped (%s), using raw scores", e.reason)
            return {}, "raw_score"
        except ProviderError as e:
            self.stats.record_failure(RERANK_PROVIDER, e.kind, time.monotonic() - started)
            logger.warning("Rerank failed, using raw scores: %s", e)
            return {}, "raw_score"

        self.stats.record_success(RERANK_PROVIDER, time.monotonic() - started)
        scores = {urls[index]: score for index, score in ranked if 0 <= index < len(urls)}
        # Documents the reranker left out rank below every scored one
        for url in urls:
            scores.setdefault(url, 0.0)
        if self.cache is not None:
            await self.cache.set(key, scores, ttl=self.score_cache_ttl)
        return scores, RERANK_PROVIDER

    async def _rerank_with_timeout(
        self,
        query: str,
        documents: list[str],
        top_k: int,
    ) -> list[tuple[int, float]]:
        try:
            return await asyncio.wait_for(
                self.reranker.rerank(query, documents, top_k),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise ProviderTimeout(RERANK_PROVIDER, f"Rerank exceeded {self.timeout}s") from e
