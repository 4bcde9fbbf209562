"""Single date-window expansion when the first pass finds too little.

The controller moves through ``initial_window -> expanded_window -> done``
and allows at most one expansion. The expanded window keeps ``date_from``
and pushes ``date_to`` out by ``expand_step_days``, never beyond the
maximum span.
"""

import logging
from enum import Enum

from eventscout.config.store import Thresholds
from eventscout.services.event_models import ExtractedEvent, QualityWindow

logger = logging.getLogger(__name__)


class ExpansionState(str, Enum):
    """Where the controller is in its lifecycle."""

    INITIAL_WINDOW = "initial_window"
    EXPANDED_WINDOW = "expanded_window"
    DONE = "done"


class AutoExpandController:
    """Decides whether to run an expanded second pass."""

    def __init__(self, thresholds: Thresholds) -> None:
        self.thresholds = thresholds
        self.state = ExpansionState.INITIAL_WINDOW
        self.expansions = 0

    def should_expand(self, accepted_count: int, window: QualityWindow) -> bool:
        """Check the expansion conditions.

        Args:
            accepted_count: Events accepted so far
            window: Window used by the first pass

        Returns:
            True if a second pass with a wider window should run
        """
        return (
            self.state == ExpansionState.INITIAL_WINDOW
            and accepted_count < self.thresholds.min_solid_hits
            and window.span_days < self.thresholds.max_window_span_days
        )

    def expand(self, window: QualityWindow) -> QualityWindow:
        """Build the expanded window and move to ``expanded_window``.

        Raises:
            RuntimeError: If an expansion already happened
        """
        if self.state != ExpansionState.INITIAL_WINDOW:
            msg = f"Window can only be expanded once (state={self.state.value})"
            raise RuntimeError(msg)
        expanded = window.expanded(
            self.thresholds.expand_step_days,
            self.thresholds.max_window_span_days,
        )
        self.state = ExpansionState.EXPANDED_WINDOW
        self.expansions += 1
        logger.info(
            "Expanding window %s..%s -> %s..%s",
            window.date_from,
            window.date_to,
            expanded.date_from,
            expanded.date_to,
        )
        return expanded

    def finish(self) -> None:
        self.state = ExpansionState.DONE


def merge_passes(first: list[ExtractedEvent], second: list[ExtractedEvent]) -> list[ExtractedEvent]:
    """Merge two passes by source URL, keeping the higher-quality record.

    First-pass records win ties so a URL is never replaced by an equal
    expanded-pass copy.
    """
    merged: dict[str, ExtractedEvent] = {}
    for event in first + second:
        current = merged.get(event.source_url)
        if current is None or event.quality_score > current.quality_score:
            merged[event.source_url] = event
    return list(merged.values())
