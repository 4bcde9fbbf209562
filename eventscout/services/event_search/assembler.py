"""Final assembly of the event search result."""

import logging
from typing import Any

from eventscout.services.event_models import (
    EventSearchResult,
    EventStatus,
    ExtractedEvent,
    QualityWindow,
    ResultMetadata,
    SearchStatus,
    StageLog,
)

logger = logging.getLogger(__name__)


class ResultAssembler:
    """Builds the EventSearchResult from accepted events, counters and logs."""

    def __init__(self, min_solid_hits: int) -> None:
        self.min_solid_hits = min_solid_hits

    @staticmethod
    def dedupe(events: list[ExtractedEvent]) -> list[ExtractedEvent]:
        """One record per source URL, the higher quality one."""
        best: dict[str, ExtractedEvent] = {}
        for event in events:
            current = best.get(event.source_url)
            if current is None or event.quality_score > current.quality_score:
                best[event.source_url] = event
        return list(best.values())

    @staticmethod
    def sort(events: list[ExtractedEvent]) -> list[ExtractedEvent]:
        """Quality desc, then confidence desc, then URL."""
        return sorted(events, key=lambda e: (-e.quality_score, -e.confidence, e.source_url))

    def assemble(
        self,
        events: list[ExtractedEvent],
        counters: dict[str, int],
        window: QualityWindow,
        logs: list[StageLog],
        providers: dict[str, Any],
        partial: bool = False,
        expanded: bool = False,
        error: str | None = None,
    ) -> EventSearchResult:
        """Build the result object.

        Args:
            events: Gated events from every pass (rejected ones are dropped)
            counters: Summed ``discovered``, ``prioritized`` and ``extracted`` counts
            window: Window of the last pass that ran
            logs: Stage logs in execution order
            providers: Provider counters for this request
            partial: Budget ran out before the pipeline finished
            expanded: A second pass with a wider window ran
            error: Failure that stopped the pipeline; the events gated before it
                are still returned

        Returns:
            EventSearchResult ready to return to the caller
        """
        accepted = self.sort(self.dedupe([e for e in events if e.status == EventStatus.ACCEPTED]))
        metadata = ResultMetadata(
            discovered=counters.get("discovered", 0),
            prioritized=counters.get("prioritized", 0),
            extracted=counters.get("extracted", 0),
            accepted=len(accepted),
            low_confidence=len(accepted) < self.min_solid_hits,
            window_used=window,
            partial=partial or error is not None,
            expanded=expanded,
            providers=providers,
        )
        if error is not None:
            status = SearchStatus.ERROR
        elif partial:
            status = SearchStatus.PARTIAL
        else:
            status = SearchStatus.COMPLETE
        logger.info(
            "Assembled %d events (status=%s, low_confidence=%s)",
            len(accepted),
            status.value,
            metadata.low_confidence,
        )
        return EventSearchResult(
            success=error is None,
            status=status,
            events=accepted,
            metadata=metadata,
            logs=logs,
            error=error,
        )

    def no_candidates(
        self,
        window: QualityWindow,
        logs: list[StageLog],
        providers: dict[str, Any],
        expanded: bool,
    ) -> EventSearchResult:
        """Hard failure: neither pass discovered anything."""
        return EventSearchResult(
            success=False,
            status=SearchStatus.NO_CANDIDATES,
            metadata=ResultMetadata(
                low_confidence=True,
                window_used=window,
                expanded=expanded,
                providers=providers,
            ),
            logs=logs,
            error="discovery_exhausted",
        )
