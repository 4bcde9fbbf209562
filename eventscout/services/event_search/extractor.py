"""Event extraction from prioritized candidates.

For each candidate: cache check, fetch of the main page and up to two
speaker/agenda sub-pages, chunking, then one batched structured LLM call.
A second call with further chunks happens only when title, date or location
are still missing or uncertain. A truncated answer is retried once with half
the chunks. Without a usable LLM answer a regex extractor fills in title and
date. Speakers always pass the person validator.

Workers share a cancellation event: once it is set they finish the current
step and take no further candidates. A candidate that fails unexpectedly, or
whose cached record no longer validates, never stops the other workers.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from eventscout.config.store import ConfigSnapshot, Thresholds
from eventscout.config.templates import COUNTRY_DATA, resolve_country
from eventscout.core.constants import EXTRACTION_OUTPUT_TOKENS, REGEX_FALLBACK_CONFIDENCE
from eventscout.core.exceptions import FetchError, LLMError, LLMTruncated
from eventscout.services.event_models import (
    Candidate,
    EventExtraction,
    EventStatus,
    ExtractedEvent,
    ExtractionMethod,
    FetchedPage,
    PassType,
    Provenance,
    QualityWindow,
    SearchRequest,
    StageLog,
)
from eventscout.utils.integration_helpers import CacheManager, namespaced_key, performance_monitor
from eventscout.utils.text import extract_dates
from eventscout.utils.url import has_speaker_path, select_subpages

from .chunking import Chunk, build_chunks
from .config import EventSearchConfig
from .fetcher import ContentFetcher
from .llm import LLMClient
from .speakers import filter_speakers

logger = logging.getLogger(__name__)

TEXT_SAMPLE_CHARS = 3000

ResultCallback = Callable[[ExtractedEvent], Awaitable[None]]


@dataclass
class ExtractionCounters:
    """What happened to the candidates of one extraction run."""

    cache_hits: int = 0
    llm: int = 0
    regex: int = 0
    fetch_failures: int = 0
    errors: int = 0
    truncation_retries: int = 0
    follow_up_calls: int = 0
    cancelled: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class ExtractionBatch:
    """Extracted events in candidate priority order plus the stage log."""

    events: list[ExtractedEvent]
    log: StageLog
    counters: ExtractionCounters = field(default_factory=ExtractionCounters)


def extraction_cache_key(url: str) -> str:
    """Cache key for an extracted event, derived from its canonical URL."""
    return namespaced_key("extraction", url)


def is_complete(extraction: EventExtraction, min_confidence: float) -> bool:
    """Title, date and location are all present with high confidence."""
    return (
        bool(extraction.title)
        and extraction.title_confidence >= min_confidence
        and bool(extraction.date_iso)
        and extraction.date_confidence >= min_confidence
        and extraction.has_location
        and extraction.location_confidence >= min_confidence
    )


def merge_extractions(first: EventExtraction, second: EventExtraction) -> EventExtraction:
    """Fill gaps of the first answer from the second and union the speakers."""
    update = {}
    if not first.title or second.title_confidence > first.title_confidence:
        if second.title:
            update["title"] = second.title
            update["title_confidence"] = second.title_confidence
    if not first.date_iso or second.date_confidence > first.date_confidence:
        if second.date_iso:
            update["date_iso"] = second.date_iso
            update["end_date_iso"] = second.end_date_iso
            update["date_confidence"] = second.date_confidence
    if not first.has_location or second.location_confidence > first.location_confidence:
        if second.has_location:
            for name in ("location", "venue", "city", "country"):
                update[name] = getattr(second, name) or getattr(first, name)
            update["location_confidence"] = second.location_confidence
    update["speakers"] = first.speakers + second.speakers
    return first.model_copy(update=update)


def regex_extraction(main: FetchedPage, candidate: Candidate, request: SearchRequest) -> EventExtraction:
    """Title and date from page text when no LLM answer is available."""
    title = ""
    for line in main.content.splitlines():
        if line.startswith("# "):
            title = line[2:].strip()
            break
    title = title or candidate.title

    dates = extract_dates(main.content[:20000])
    date_iso = dates[0].isoformat() if dates else None
    end_date_iso = None
    if len(dates) > 1 and 0 < (dates[1] - dates[0]).days <= 7:
        end_date_iso = dates[1].isoformat()

    country = None
    city = None
    code = resolve_country(request.region)
    if code:
        data = COUNTRY_DATA[code]
        text = main.content[:20000].lower()
        if any(name.lower() in text for name in data["names"].values()):
            country = data["names"]["en"]
        city = next((c for c in data["cities"] if c.lower() in text), None)

    return EventExtraction(
        title=title or None,
        title_confidence=REGEX_FALLBACK_CONFIDENCE if title else 0.0,
        date_iso=date_iso,
        end_date_iso=end_date_iso,
        date_confidence=REGEX_FALLBACK_CONFIDENCE if date_iso else 0.0,
        city=city,
        country=country,
        location_confidence=REGEX_FALLBACK_CONFIDENCE if city else 0.0,
    )


class ExtractionEngine:
    """Fetches candidate pages and extracts structured event records."""

    def __init__(
        self,
        config: EventSearchConfig,
        fetcher: ContentFetcher,
        llm: LLMClient | None,
        cache: CacheManager | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Event search configuration (timeouts, concurrency)
            fetcher: ContentFetcher used for main pages and sub-pages
            llm: Structured-output LLM client, or None for regex only
            cache: Optional cache for extracted events
        """
        self.config = config
        self.fetcher = fetcher
        self.llm = llm
        self.cache = cache

    @performance_monitor
    async def extract_many(
        self,
        candidates: list[Candidate],
        request: SearchRequest,
        snapshot: ConfigSnapshot,
        window: QualityWindow,
        cancel_event: asyncio.Event,
        pass_type: PassType = PassType.INITIAL,
        on_result: ResultCallback | None = None,
    ) -> ExtractionBatch:
        """Extract the top candidates with a bounded worker pool.

        Args:
            candidates: Candidates in priority order
            request: Search request
            snapshot: Configuration snapshot for this run
            window: Quality window of this pass
            cancel_event: Set when enough good events are accepted
            pass_type: Pass these candidates belong to
            on_result: Awaited with each extracted event as soon as it is ready

        Returns:
            Extracted events in candidate priority order
        """
        start = time.monotonic()
        selected = candidates[: snapshot.thresholds.extraction_top_k]
        counters = ExtractionCounters()
        results: dict[int, ExtractedEvent] = {}
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while not cancel_event.is_set() and next_index < len(selected):
                position = next_index
                next_index += 1
                try:
                    event = await self.extract(
                        selected[position],
                        request,
                        snapshot.thresholds,
                        window,
                        cancel_event,
                        pass_type,
                        counters,
                    )
                except Exception:
                    counters.errors += 1
                    logger.exception("Extraction of %s failed, dropping candidate", selected[position].url)
                    continue
                if event is None:
                    continue
                results[position] = event
                if on_result is not None:
                    await on_result(event)

        workers = min(self.config.extraction_concurrency, len(selected))
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))
        counters.cancelled += len(selected) - next_index

        events = [results[i] for i in sorted(results)]
        log = StageLog(
            stage="extraction",
            pass_type=pass_type,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
            input_count=len(selected),
            output_count=len(events),
            detail=counters.as_dict(),
        )
        logger.info(
            "Extraction (%s): %d/%d candidates extracted (%d cached, %d llm, %d regex)",
            pass_type.value,
            len(events),
            len(selected),
            counters.cache_hits,
            counters.llm,
            counters.regex,
        )
        return ExtractionBatch(events=events, log=log, counters=counters)

    async def extract(
        self,
        candidate: Candidate,
        request: SearchRequest,
        thresholds: Thresholds,
        window: QualityWindow,
        cancel_event: asyncio.Event,
        pass_type: PassType = PassType.INITIAL,
        counters: ExtractionCounters | None = None,
    ) -> ExtractedEvent | None:
        """Extract one candidate.

        Returns:
            Draft event, or None if the page could not be fetched or the run
            was cancelled
        """
        counters = counters or ExtractionCounters()
        key = extraction_cache_key(candidate.url)

        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    event = self._from_cache(cached, candidate, window, pass_type)
                except (ValidationError, TypeError) as e:
                    logger.warning("Discarding stale cached extraction for %s: %s", candidate.url, e)
                    await self.cache.invalidate(key)
                else:
                    counters.cache_hits += 1
                    return event

        if cancel_event.is_set():
            counters.cancelled += 1
            return None

        try:
            main = await self.fetcher.fetch(candidate.url, self.config.fetch_timeout)
        except FetchError as e:
            counters.fetch_failures += 1
            logger.warning("Dropping candidate %s: %s", candidate.url, e)
            return None

        subpages = await self._fetch_subpages(main, thresholds.max_subpages, cancel_event)
        chunks = build_chunks(main, subpages, thresholds.chunk_size, thresholds.chunk_overlap)

        if cancel_event.is_set():
            counters.cancelled += 1
            return None

        extraction = None
        method = ExtractionMethod.REGEX
        if self.llm is not None and self.config.llm_enabled and chunks:
            extraction = await self._llm_extract(chunks, request, thresholds, cancel_event, counters)
        if extraction is not None:
            method = ExtractionMethod.LLM
            counters.llm += 1
        else:
            extraction = regex_extraction(main, candidate, request)
            counters.regex += 1

        event = self._build_event(candidate, main, subpages, chunks, extraction, method, window, pass_type)

        if cancel_event.is_set():
            return event
        if self.cache is not None:
            await self.cache.set(
                key,
                event.model_dump(mode="json"),
                ttl=self.config.extraction_cache_ttl,
            )
        return event

    async def _fetch_subpages(
        self,
        main: FetchedPage,
        limit: int,
        cancel_event: asyncio.Event,
    ) -> list[FetchedPage]:
        urls = select_subpages(main.url, main.links, limit)
        if not urls or cancel_event.is_set():
            return []

        async def fetch_one(url: str) -> FetchedPage | None:
            try:
                return await self.fetcher.fetch(url, self.config.subpage_timeout)
            except FetchError as e:
                logger.debug("Sub-page %s skipped: %s", url, e)
                return None

        pages = await asyncio.gather(*(fetch_one(url) for url in urls))
        return [page for page in pages if page is not None and page.content]

    async def _llm_extract(
        self,
        chunks: list[Chunk],
        request: SearchRequest,
        thresholds: Thresholds,
        cancel_event: asyncio.Event,
        counters: ExtractionCounters,
    ) -> EventExtraction | None:
        """Batched extraction with one follow-up call for missing core fields."""
        per_call = thresholds.max_chunks_per_call
        first_batch = chunks[:per_call]
        first = await self._call_with_truncation_retry(first_batch, request, counters)
        if first is None:
            return None

        if is_complete(first, thresholds.core_field_confidence):
            return first

        remaining = chunks[len(first_batch) : len(first_batch) + per_call]
        if not remaining or cancel_event.is_set():
            return first

        counters.follow_up_calls += 1
        second = await self._call_with_truncation_retry(remaining, request, counters)
        if second is None:
            return first
        return merge_extractions(first, second)

    async def _call_with_truncation_retry(
        self,
        chunks: list[Chunk],
        request: SearchRequest,
        counters: ExtractionCounters,
    ) -> EventExtraction | None:
        budget = EXTRACTION_OUTPUT_TOKENS + self.config.reasoning_overhead_tokens
        batch = chunks
        for attempt in range(2):
            try:
                return await self._call_once(batch, request, budget)
            except LLMTruncated:
                if attempt == 0 and len(batch) > 1:
                    counters.truncation_retries += 1
                    batch = batch[: len(batch) // 2]
                    logger.info("Extraction output truncated, retrying with %d chunks", len(batch))
                    continue
                break
            except LLMError as e:
                logger.warning("LLM extraction failed: %s", e)
                return None

        logger.warning("Extraction output still truncated, falling back to regex")
        return None

    async def _call_once(self, chunks: list[Chunk], request: SearchRequest, budget: int) -> EventExtraction:
        response = await self.llm.extract_structured(
            self._build_prompt(chunks, request),
            EventExtraction,
            max_output_tokens=budget,
            timeout=self.config.llm_timeout,
        )
        if response.truncated or response.output is None:
            raise LLMTruncated(f"Extraction output cut off at {budget} tokens ({len(chunks)} chunks)")
        return response.output

    def _build_prompt(self, chunks: list[Chunk], request: SearchRequest) -> str:
        content = "\n\n---\n\n".join(chunk.render() for chunk in chunks)
        return f"""Extract the details of the single event described on these pages.

Search context: {request.topic} events in {request.region or "any region"} between {request.date_from.isoformat()} and {request.date_to.isoformat()}.

Page content:
{content}

Return:
- title: the official event name
- date_iso / end_date_iso: start and end date as YYYY-MM-DD
- location, venue, city, country
- speakers: people presenting, with role and organization when given
- a confidence between 0.0 and 1.0 for the title, the date and the location

Do NOT include:
- sponsors, exhibitors, partners or organizing companies as speakers
- session titles, panel names or track names as speakers
- buttons, navigation labels or registration text
- dates of other events, past editions, newsletters or blog posts

Leave a field empty when the pages do not state it."""

    def _build_event(
        self,
        candidate: Candidate,
        main: FetchedPage,
        subpages: list[FetchedPage],
        chunks: list[Chunk],
        extraction: EventExtraction,
        method: ExtractionMethod,
        window: QualityWindow,
        pass_type: PassType,
    ) -> ExtractedEvent:
        speakers = filter_speakers(extraction.speakers)
        has_speaker_subpage = any(has_speaker_path(page.url) for page in subpages) or any(
            chunk.is_speaker_section for chunk in chunks
        )
        if method == ExtractionMethod.LLM:
            confidence = (
                extraction.title_confidence
                + extraction.date_confidence
                + extraction.location_confidence
            ) / 3
        else:
            confidence = REGEX_FALLBACK_CONFIDENCE

        return ExtractedEvent(
            title=extraction.title or candidate.title or candidate.host,
            date_iso=extraction.date_iso,
            end_date_iso=extraction.end_date_iso,
            location=extraction.location,
            venue=extraction.venue,
            city=extraction.city,
            country=extraction.country,
            speakers=speakers,
            source_url=candidate.url,
            host=candidate.host,
            confidence=round(min(max(confidence, 0.0), 1.0), 4),
            has_speaker_subpage=has_speaker_subpage,
            discovery_order=candidate.discovery_order,
            text_sample=main.content[:TEXT_SAMPLE_CHARS],
            provenance=Provenance(
                provider=candidate.discovered_via,
                query_tag=candidate.query_tag,
                pass_type=pass_type,
                extraction_method=method,
                confidence=round(min(max(confidence, 0.0), 1.0), 4),
                window_used=window,
            ),
        )

    def _from_cache(
        self,
        cached: dict[str, Any],
        candidate: Candidate,
        window: QualityWindow,
        pass_type: PassType,
    ) -> ExtractedEvent:
        event = ExtractedEvent.model_validate(cached)
        provenance = event.provenance.model_copy(
            update={
                "provider": candidate.discovered_via,
                "query_tag": candidate.query_tag,
                "pass_type": pass_type,
                "extraction_method": ExtractionMethod.CACHE,
                "window_used": window,
            },
        )
        return event.model_copy(
            update={
                "provenance": provenance,
                "discovery_order": candidate.discovery_order,
                "status": EventStatus.DRAFT,
                "quality_score": 0.0,
                "rejection_reason": None,
                "date_status": None,
            },
        )
