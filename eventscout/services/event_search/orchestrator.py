"""Event search orchestrator - main pipeline orchestration.

This module coordinates the stages of one event search request:

1. Query Building (topic template, precision weights, caller profile)
2. Discovery (provider chain with fallback, cache and guards)
3. Rerank (aggregator filter, semantic rerank, TLD and path bias)
4. Prioritization (batched LLM scoring with heuristic fallback)
5. Extraction (fetch, chunk, structured extraction) gated event by event
6. Auto-expansion (one wider-window pass when results are sparse)
7. Assembly (dedupe, sort, counters and stage logs)

The whole run is bounded by a wall-clock budget. When it runs out, the events
accepted so far are returned with ``partial=True``. An unexpected failure
also keeps the accepted events and reports ``status="error"``.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from eventscout.config.store import ConfigSnapshot, ConfigStore, TopicTemplate
from eventscout.core.exceptions import TemplateNotFoundError
from eventscout.services.event_models import (
    EventSearchResult,
    EventStatus,
    ExtractedEvent,
    PassType,
    QualityWindow,
    SearchRequest,
    StageLog,
)
from eventscout.utils.integration_helpers import ProviderStats

from .assembler import ResultAssembler
from .config import EventSearchConfig
from .discovery import DiscoveryEngine
from .expansion import AutoExpandController, merge_passes
from .extractor import ExtractionEngine
from .prioritizer import PrioritizationEngine
from .quality import QualityGate
from .query_builder import QueryBuilder
from .rerank import RerankGate

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Everything one request has produced so far.

    Kept outside the pipeline coroutine so a budget timeout can still
    assemble what was accepted before it fired.
    """

    request: SearchRequest
    snapshot: ConfigSnapshot
    gate: QualityGate
    window: QualityWindow
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    logs: list[StageLog] = field(default_factory=list)
    gated: dict[PassType, list[ExtractedEvent]] = field(default_factory=dict)
    counters: Counter = field(default_factory=Counter)
    processed_urls: set[str] = field(default_factory=set)
    early_stop_hits: int = 0
    expanded: bool = False
    quality_pending: PassType | None = None
    pass_started: float = 0.0

    def events(self) -> list[ExtractedEvent]:
        """Gated events of both passes, merged by source URL."""
        return merge_passes(
            self.gated.get(PassType.INITIAL, []),
            self.gated.get(PassType.EXPANDED, []),
        )

    def accepted_count(self, pass_type: PassType | None = None) -> int:
        if pass_type is None:
            events = self.events()
        else:
            events = self.gated.get(pass_type, [])
        return sum(1 for e in events if e.status == EventStatus.ACCEPTED)


class EventSearchService:
    """Service for executing event searches end to end.

    Stage components are injected so each can be replaced in tests; the
    service itself only sequences them, applies the budget and runs the
    quality gate as extraction results arrive.
    """

    def __init__(
        self,
        config: EventSearchConfig,
        config_store: ConfigStore,
        discovery: DiscoveryEngine,
        reranker: RerankGate,
        prioritizer: PrioritizationEngine,
        extractor: ExtractionEngine,
        stats: ProviderStats,
    ) -> None:
        """Initialize the event search service with its stage components.

        Args:
            config: EventSearchConfig instance
            config_store: Source of per-request configuration snapshots
            discovery: DiscoveryEngine instance
            reranker: RerankGate instance
            prioritizer: PrioritizationEngine instance
            extractor: ExtractionEngine instance
            stats: Process-wide provider counters
        """
        self.config = config
        self.config_store = config_store
        self.discovery = discovery
        self.reranker = reranker
        self.prioritizer = prioritizer
        self.extractor = extractor
        self.stats = stats

    async def search(
        self,
        request: SearchRequest,
        budget_seconds: float | None = None,
    ) -> EventSearchResult:
        """Run the event search pipeline for one request.

        Args:
            request: Validated search request
            budget_seconds: Override the configured wall-clock budget

        Returns:
            EventSearchResult; recoverable failures are reported in it, never raised
        """
        snapshot = self.config_store.snapshot()
        state = RunState(
            request=request,
            snapshot=snapshot,
            gate=QualityGate(snapshot, request.precision_weights),
            window=request.window,
        )
        assembler = ResultAssembler(snapshot.thresholds.min_solid_hits)
        budget = budget_seconds or self.config.pipeline_budget_seconds
        stats_before = self.stats.snapshot()

        logger.info(
            "Starting event search: topic=%s region=%s window=%s..%s (config v%d, budget %.0fs)",
            request.topic,
            request.region,
            request.date_from,
            request.date_to,
            snapshot.version,
            budget,
        )

        partial = False
        error = None
        try:
            await asyncio.wait_for(self._run(state), timeout=budget)
        except TimeoutError:
            partial = True
            state.cancel_event.set()
            self._log_quality(state)
            logger.warning(
                "Event search budget of %.0fs exhausted, returning %d accepted events",
                budget,
                state.accepted_count(),
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            state.cancel_event.set()
            self._log_quality(state)
            logger.exception(
                "Event search failed, returning %d accepted events: %s",
                state.accepted_count(),
                e,
            )

        providers = self.stats.diff(stats_before)
        if error is None and not partial and state.counters["discovered"] == 0:
            logger.warning("No candidates discovered in any pass for topic=%s", request.topic)
            return assembler.no_candidates(state.window, state.logs, providers, state.expanded)

        return assembler.assemble(
            state.events(),
            dict(state.counters),
            state.window,
            state.logs,
            providers,
            partial=partial,
            expanded=state.expanded,
            error=error,
        )

    async def _run(self, state: RunState) -> None:
        """Initial pass, then at most one expanded pass."""
        template = self._resolve_template(state)
        await self._run_pass(state, state.request, PassType.INITIAL, template, skip_urls=set())

        controller = AutoExpandController(state.snapshot.thresholds)
        accepted = state.accepted_count(PassType.INITIAL)
        if state.cancel_event.is_set() or not controller.should_expand(accepted, state.window):
            controller.finish()
            return

        logger.info(
            "Only %d accepted (minimum %d), running one expanded pass",
            accepted,
            state.snapshot.thresholds.min_solid_hits,
        )
        skip_urls = set(state.processed_urls)
        state.window = controller.expand(state.window)
        state.expanded = True
        expanded_request = state.request.model_copy(update={"date_to": state.window.date_to})
        await self._run_pass(state, expanded_request, PassType.EXPANDED, template, skip_urls=skip_urls)
        controller.finish()

    def _resolve_template(self, state: RunState) -> TopicTemplate:
        try:
            return state.snapshot.template_for(state.request.topic)
        except TemplateNotFoundError:
            logger.warning(
                "No template for topic '%s', using the generic template",
                state.request.topic,
            )
            return state.snapshot.generic_template()

    async def _run_pass(
        self,
        state: RunState,
        request: SearchRequest,
        pass_type: PassType,
        template: TopicTemplate,
        skip_urls: set[str],
    ) -> None:
        """Discovery through quality gating for one window."""
        snapshot = state.snapshot
        window = request.window
        state.gated.setdefault(pass_type, [])

        variants = QueryBuilder(snapshot.thresholds.max_query_variants).build(request, snapshot, template)
        discovered = await self.discovery.discover(variants, request, snapshot, skip_urls, pass_type)
        state.logs.append(discovered.log)
        state.counters["discovered"] += len(discovered.candidates)
        if not discovered.candidates:
            logger.info("Pass %s discovered no candidates", pass_type.value)
            return

        reranked = await self.reranker.rerank(discovered.candidates, request, snapshot, pass_type)
        state.logs.append(reranked.log)

        prioritized = await self.prioritizer.prioritize(reranked.candidates, request, pass_type)
        state.logs.append(prioritized.log)
        state.counters["prioritized"] += len(prioritized.candidates)

        queue = [
            c.model_copy(update={"extraction_order": i})
            for i, c in enumerate(prioritized.candidates)
        ]
        attempted = {c.url for c in queue[: snapshot.thresholds.extraction_top_k]}
        state.processed_urls |= attempted

        async def gate_event(event: ExtractedEvent) -> None:
            gated = state.gate.evaluate(event, request, window)
            state.gated[pass_type].append(gated)
            state.processed_urls.add(gated.source_url)
            if state.gate.is_early_stop_hit(gated):
                state.early_stop_hits += 1
                if state.early_stop_hits >= snapshot.thresholds.early_stop_accepted and not state.cancel_event.is_set():
                    logger.info(
                        "Early stop: %d events at quality >= %.2f",
                        state.early_stop_hits,
                        snapshot.thresholds.early_stop_quality,
                    )
                    state.cancel_event.set()

        state.quality_pending = pass_type
        state.pass_started = time.monotonic()
        batch = await self.extractor.extract_many(
            queue,
            request,
            snapshot,
            window,
            state.cancel_event,
            pass_type,
            on_result=gate_event,
        )
        state.logs.append(batch.log)
        state.counters["extracted"] += len(batch.events)
        self._log_quality(state)

    def _log_quality(self, state: RunState) -> None:
        """Append the quality stage log of the pass in progress, once."""
        pass_type = state.quality_pending
        if pass_type is None:
            return
        state.quality_pending = None
        events = state.gated.get(pass_type, [])
        accepted = [e for e in events if e.status == EventStatus.ACCEPTED]
        rejections = Counter(
            (e.rejection_reason or "unknown").split(":")[0]
            for e in events
            if e.status == EventStatus.REJECTED
        )
        state.logs.append(
            StageLog(
                stage="quality",
                pass_type=pass_type,
                duration_ms=round((time.monotonic() - state.pass_started) * 1000, 1),
                input_count=len(events),
                output_count=len(accepted),
                detail={
                    "rejections": dict(rejections),
                    "early_stop_hits": state.early_stop_hits,
                    "early_stopped": state.early_stop_hits >= state.snapshot.thresholds.early_stop_accepted,
                    "low_threshold": round(state.gate.low_threshold, 4),
                },
            ),
        )
