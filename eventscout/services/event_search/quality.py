"""Quality gate for extracted events.

Hard rejects come first: legal, terms or error pages, generic listings, and
blog or news articles without a real speaker section. Everything else gets a
weighted quality score (capped at 1) and is accepted when it clears the high
threshold, or the low threshold together with a valid date and enough
speakers.
"""

import logging

from eventscout.config.store import ConfigSnapshot, PrecisionWeights, Thresholds
from eventscout.config.templates import COUNTRY_DATA, resolve_country
from eventscout.core.exceptions import QualityBelowThreshold
from eventscout.services.event_models import (
    CandidateMeta,
    DateWindowStatus,
    EventStatus,
    ExtractedEvent,
    QualityWindow,
    SearchRequest,
    parse_iso_date,
)
from eventscout.utils.text import has_hard_reject_text, is_blog_or_news, is_listing_page
from eventscout.utils.url import has_country_tld, is_aggregator_host

logger = logging.getLogger(__name__)

# Low threshold moves by this much per point of quality strictness away from 5
STRICTNESS_STEP = 0.01


def date_tolerance_days(window: QualityWindow, thresholds: Thresholds) -> int:
    """Days outside the window a date may lie and still count as valid."""
    return min(
        thresholds.max_date_tolerance_days,
        max(thresholds.min_date_tolerance_days, window.span_days * 2),
    )


def date_status(date_iso: str | None, window: QualityWindow, thresholds: Thresholds) -> DateWindowStatus:
    """Relate an event date to the quality window."""
    day = parse_iso_date(date_iso)
    if day is None:
        return DateWindowStatus.NO_DATE
    if window.contains(day):
        return DateWindowStatus.IN_WINDOW
    if window.distance_days(day) <= date_tolerance_days(window, thresholds):
        return DateWindowStatus.WITHIN_TOLERANCE
    return DateWindowStatus.OUT_OF_RANGE


def to_meta(event: ExtractedEvent, snapshot: ConfigSnapshot) -> CandidateMeta:
    """Flatten an event into the fields the gate looks at."""
    return CandidateMeta(
        url=event.source_url,
        host=event.host,
        title=event.title,
        date_iso=event.date_iso,
        venue=event.venue or event.location,
        city=event.city,
        country=event.country,
        speaker_count=len(event.speakers),
        has_speaker_subpage=event.has_speaker_subpage,
        is_official_domain=not is_aggregator_host(event.host, snapshot.aggregator_domains),
        text_sample=event.text_sample,
    )


def country_matches(meta: CandidateMeta, region: str | None) -> bool:
    """Check the event against the requested region.

    Uses the extracted country first, then the host TLD and the region's
    major cities. Requests without a known region always match.
    """
    target = resolve_country(region)
    if target is None:
        return True
    if meta.country:
        return resolve_country(meta.country) == target
    data = COUNTRY_DATA[target]
    if has_country_tld(meta.host, data["tld"]):
        return True
    city = (meta.city or "").lower()
    return bool(city) and any(city == c.lower() for c in data["cities"])


def hard_reject_reason(meta: CandidateMeta, thresholds: Thresholds) -> str | None:
    """Reason a page can never be accepted, or None."""
    matched = has_hard_reject_text(meta.title, meta.text_sample)
    if matched:
        return f"hard_reject_text:{matched}"
    if is_listing_page(meta.url, meta.title):
        return "listing_page"
    genuine_speakers = meta.has_speaker_subpage and meta.speaker_count >= thresholds.min_speakers
    if is_blog_or_news(meta.url) and not genuine_speakers:
        return "blog_or_news"
    return None


def quality_score(
    meta: CandidateMeta,
    status: DateWindowStatus,
    region: str | None,
    thresholds: Thresholds,
) -> float:
    """Weighted quality signals, capped at 1.

    A date inside the window earns the full date weight, a date within
    tolerance half of it.
    """
    weights = thresholds.quality_weights
    score = 0.0
    if status == DateWindowStatus.IN_WINDOW:
        score += weights.date_in_range
    elif status == DateWindowStatus.WITHIN_TOLERANCE:
        score += weights.date_in_range / 2
    if country_matches(meta, region):
        score += weights.country_match
    if meta.venue or meta.city:
        score += weights.venue_or_city
    if meta.has_speaker_subpage:
        score += weights.speaker_subpage
    if meta.speaker_count >= thresholds.min_speakers:
        score += weights.speaker_count
    return round(min(score, 1.0), 4)


class QualityGate:
    """Scores extracted events and decides acceptance."""

    def __init__(self, snapshot: ConfigSnapshot, weights: PrecisionWeights | None = None) -> None:
        """Initialize the gate for one run.

        Args:
            snapshot: Configuration snapshot holding the thresholds
            weights: Precision weights; quality strictness nudges the low threshold
        """
        self.snapshot = snapshot
        self.thresholds = snapshot.thresholds
        strictness = (weights or snapshot.default_weights).quality_strictness
        self.low_threshold = min(
            self.thresholds.high_quality_threshold,
            max(0.0, self.thresholds.low_quality_threshold + (strictness - 5) * STRICTNESS_STEP),
        )

    def check(self, meta: CandidateMeta, status: DateWindowStatus, quality: float) -> None:
        """Raise unless the event may be accepted.

        Raises:
            QualityBelowThreshold: With the reason for rejection
        """
        reason = hard_reject_reason(meta, self.thresholds)
        if reason:
            raise QualityBelowThreshold(meta.url, quality, reason)

        if quality >= self.thresholds.high_quality_threshold:
            return

        date_valid = status in (DateWindowStatus.IN_WINDOW, DateWindowStatus.WITHIN_TOLERANCE)
        enough_speakers = meta.speaker_count >= self.thresholds.min_speakers
        if quality >= self.low_threshold and date_valid and enough_speakers:
            return

        if quality < self.low_threshold:
            reason = "below_low_threshold"
        elif not date_valid:
            reason = f"date_{status.value}"
        else:
            reason = "too_few_speakers"
        raise QualityBelowThreshold(meta.url, quality, reason)

    def evaluate(self, event: ExtractedEvent, request: SearchRequest, window: QualityWindow) -> ExtractedEvent:
        """Score an event and mark it accepted or rejected.

        Args:
            event: Draft event from extraction
            request: Search request (region)
            window: Quality window of the pass that produced the event

        Returns:
            Copy of the event with quality score, date status and status set
        """
        meta = to_meta(event, self.snapshot)
        status = date_status(meta.date_iso, window, self.thresholds)
        quality = quality_score(meta, status, request.region, self.thresholds)
        update = {"quality_score": quality, "date_status": status}

        try:
            self.check(meta, status, quality)
        except QualityBelowThreshold as e:
            logger.debug("Rejected %s", e)
            update.update(status=EventStatus.REJECTED, rejection_reason=e.reason)
        else:
            update.update(status=EventStatus.ACCEPTED, rejection_reason=None)
        return event.model_copy(update=update)

    def is_early_stop_hit(self, event: ExtractedEvent) -> bool:
        """Accepted with a quality that counts toward early termination."""
        return event.status == EventStatus.ACCEPTED and event.quality_score >= self.thresholds.early_stop_quality
