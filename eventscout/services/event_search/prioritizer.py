"""LLM prioritization of reranked candidates with a deterministic fallback.

One batched structured call judges every candidate on a few yes/no signals,
which are weighted into a priority score in [0, 1]. If the call times out,
fails, is truncated or returns malformed output, every candidate is scored
by a heuristic instead; candidates the model skipped get the heuristic score
too. Either way every input comes back, totally ordered by score and then by
discovery order.
"""

import logging
import time
from dataclasses import dataclass

from eventscout.core.constants import (
    COUNTRY_RELEVANCE_BONUS,
    LOW_VALUE_HOST_HINTS,
    PRIORITIZATION_BASE_TOKENS,
    PRIORITIZATION_TOKENS_PER_CANDIDATE,
    PRIORITY_WEIGHTS,
    TRUSTED_EVENT_HOST_HINTS,
)
from eventscout.core.exceptions import LLMError
from eventscout.services.event_models import (
    Candidate,
    CandidateScore,
    CandidateScoreList,
    PassType,
    SearchRequest,
    StageLog,
)
from eventscout.utils.integration_helpers import CacheManager, namespaced_key, performance_monitor
from eventscout.utils.text import classify_page, is_blog_or_news, is_listing_page, tokenize
from eventscout.utils.url import has_speaker_path

from .config import EventSearchConfig
from .llm import LLMClient

logger = logging.getLogger(__name__)


@dataclass
class PrioritizationResult:
    """Ordered candidates plus the stage log."""

    candidates: list[Candidate]
    log: StageLog


def score_from_judgement(judgement: CandidateScore) -> float:
    """Weight the model's yes/no signals into a score in [0, 1]."""
    score = sum(
        weight for signal, weight in PRIORITY_WEIGHTS.items() if getattr(judgement, signal, False)
    )
    if judgement.is_country_relevant:
        score += COUNTRY_RELEVANCE_BONUS
    return round(min(score, 1.0), 4)


def heuristic_score(candidate: Candidate, request: SearchRequest) -> float:
    """Deterministic priority from host reputation, URL shape, topic overlap and years.

    Args:
        candidate: Candidate to score
        request: Search request (topic and window)

    Returns:
        Score clamped to [0, 1]
    """
    host = candidate.host.lower()
    text = f"{candidate.title} {candidate.snippet} {candidate.url}"
    score = 0.3

    if any(hint in host for hint in TRUSTED_EVENT_HOST_HINTS):
        score += 0.15
    if any(hint in host for hint in LOW_VALUE_HOST_HINTS):
        score -= 0.3
    if candidate.is_aggregator:
        score -= 0.1

    if has_speaker_path(candidate.url):
        score += 0.1
    if is_listing_page(candidate.url, candidate.title):
        score -= 0.2
    if is_blog_or_news(candidate.url):
        score -= 0.15
    if classify_page(candidate.url, candidate.title, candidate.snippet).is_event:
        score += 0.15

    topic_tokens = tokenize(request.topic)
    if topic_tokens:
        overlap = len(topic_tokens & tokenize(text)) / len(topic_tokens)
        score += 0.25 * overlap

    window_years = {str(y) for y in request.window.years()}
    if any(year in text for year in window_years):
        score += 0.1

    return round(max(0.0, min(score, 1.0)), 4)


def _ordered(candidates: list[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: (-(c.priority_score or 0.0), c.discovery_order))


class PrioritizationEngine:
    """Scores candidates with one batched LLM call, falling back to a heuristic."""

    def __init__(
        self,
        config: EventSearchConfig,
        llm: LLMClient | None,
        cache: CacheManager | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Event search configuration (timeouts, token overhead)
            llm: Structured-output LLM client, or None for heuristic only
            cache: Optional cache for LLM scores
        """
        self.config = config
        self.llm = llm
        self.cache = cache

    def token_budget(self, candidate_count: int) -> int:
        """Output token budget: answer tokens plus reasoning overhead."""
        return (
            PRIORITIZATION_BASE_TOKENS
            + PRIORITIZATION_TOKENS_PER_CANDIDATE * candidate_count
            + self.config.reasoning_overhead_tokens
        )

    @performance_monitor
    async def prioritize(
        self,
        candidates: list[Candidate],
        request: SearchRequest,
        pass_type: PassType = PassType.INITIAL,
    ) -> PrioritizationResult:
        """Score and order candidates.

        Args:
            candidates: Reranked candidates
            request: Search request
            pass_type: Pass these candidates belong to

        Returns:
            Every input candidate with ``priority_score`` set, best first
        """
        start = time.monotonic()
        llm_scores: dict[str, float] = {}
        method = "heuristic"
        fallback_reason: str | None = None

        if candidates and self.llm is not None and self.config.llm_enabled:
            llm_scores, method, fallback_reason = await self._llm_scores(candidates, request)
        elif candidates:
            fallback_reason = "llm_disabled"

        scored = []
        heuristic_count = 0
        for candidate in candidates:
            score = llm_scores.get(candidate.url)
            if score is None:
                score = heuristic_score(candidate, request)
                heuristic_count += 1
            scored.append(candidate.model_copy(update={"priority_score": score}))

        ordered = _ordered(scored)
        log = StageLog(
            stage="prioritization",
            pass_type=pass_type,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            input_count=len(candidates),
            output_count=len(ordered),
            detail={
                "method": method,
                "fallback_reason": fallback_reason,
                "llm_scored": len(candidates) - heuristic_count,
                "heuristic_scored": heuristic_count,
            },
        )
        logger.info(
            "Prioritized %d candidates (%s, %d heuristic)",
            len(ordered),
            method,
            heuristic_count,
        )
        return PrioritizationResult(candidates=ordered, log=log)

    async def _llm_scores(
        self,
        candidates: list[Candidate],
        request: SearchRequest,
    ) -> tuple[dict[str, float], str, str | None]:
        """LLM scores keyed by URL, the method used and any fallback reason."""
        key = namespaced_key(
            "priority",
            request.topic.lower(),
            (request.region or "").lower(),
            sorted(c.url for c in candidates),
        )
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return {url: float(score) for url, score in cached.items()}, "cache", None

        prompt = self._build_prompt(candidates, request)
        try:
            response = await self.llm.extract_structured(
                prompt,
                CandidateScoreList,
                max_output_tokens=self.token_budget(len(candidates)),
                timeout=self.config.llm_timeout,
            )
        except LLMError as e:
            logger.warning("LLM prioritization failed, using heuristic: %s", e)
            return {}, "heuristic", type(e).__name__

        if response.truncated or response.output is None:
            logger.warning("LLM prioritization output truncated, using heuristic")
            return {}, "heuristic", "truncated"

        scores: dict[str, float] = {}
        for judgement in response.output.scores:
            if 0 <= judgement.index < len(candidates):
                scores[candidates[judgement.index].url] = score_from_judgement(judgement)

        if self.cache is not None and len(scores) == len(candidates):
            await self.cache.set(key, scores, ttl=self.config.score_cache_ttl)
        return scores, "llm", None

    def _build_prompt(self, candidates: list[Candidate], request: SearchRequest) -> str:
        listing = "\n".join(
            f"[{i}] {c.title or '(no title)'}\n    URL: {c.url}\n    Snippet: {c.snippet[:200]}"
            for i, c in enumerate(candidates)
        )
        return f"""You are screening web search results for a professional event search.

Topic: {request.topic}
Region: {request.region or "any"}
Date window: {request.date_from.isoformat()} to {request.date_to.isoformat()}

Search results:
{listing}

For every result, answer with its index and these yes/no signals:
- is_event: the page is about one specific event (conference, summit, workshop, seminar), not a list of events
- has_agenda: the page shows or links an agenda or programme
- has_speakers: the page shows or links speakers
- is_recent: the event takes place inside the date window
- is_relevant: the event matches the topic
- is_country_relevant: the event takes place in the region

Answer for every index. Judge only from the title, URL and snippet."""
