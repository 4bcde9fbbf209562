"""
Unit tests for the quality gate.

Covers hard rejects, the weighted quality score, date tolerance, the
high/low threshold rules and the strictness nudge.
"""

from datetime import date

import pytest

from eventscout.config.store import PrecisionWeights
from eventscout.services.event_models import (
    DateWindowStatus,
    EventStatus,
    ExtractedEvent,
    Provenance,
    QualityWindow,
    Speaker,
)
from eventscout.services.event_search.quality import (
    QualityGate,
    country_matches,
    date_status,
    date_tolerance_days,
    to_meta,
)

from ..pipeline_test_helpers import make_snapshot

WINDOW = QualityWindow(date_from=date(2026, 3, 1), date_to=date(2026, 3, 31))


def make_event(url="https://fintech-summit.de", **overrides):
    values = {
        "title": "Fintech Summit 2026",
        "date_iso": "2026-03-12",
        "venue": "Messe",
        "city": "Berlin",
        "country": "Germany",
        "speakers": [Speaker(name="Anna Schmidt"), Speaker(name="Thomas Weber")],
        "source_url": url,
        "host": url.split("//", 1)[1].split("/", 1)[0],
        "confidence": 0.9,
        "has_speaker_subpage": True,
        "text_sample": "# Fintech Summit 2026\n\nTwo days of payments and banking talks.",
        "provenance": Provenance(provider="firecrawl", window_used=WINDOW),
    }
    values.update(overrides)
    return ExtractedEvent(**values)


@pytest.fixture
def gate(snapshot):
    return QualityGate(snapshot)


class TestHardRejects:
    """Pages that can never be accepted."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": "Terms and Conditions"},
            {"title": "404"},
            {"text_sample": "Page not found. The event you are looking for has moved."},
            {"text_sample": "Datenschutzerklärung\n\nWir verarbeiten Ihre Daten."},
        ],
    )
    def test_legal_and_error_pages_rejected_regardless_of_signals(self, gate, request_de, overrides):
        event = make_event(**overrides)

        result = gate.evaluate(event, request_de, WINDOW)

        assert result.status == EventStatus.REJECTED
        assert result.rejection_reason.startswith("hard_reject_text:")

    def test_listing_page_rejected(self, gate, request_de):
        event = make_event("https://fintech.de/events", title="Upcoming events")

        result = gate.evaluate(event, request_de, WINDOW)

        assert result.rejection_reason == "listing_page"

    def test_blog_without_speaker_section_rejected(self, gate, request_de):
        event = make_event("https://fintech.de/blog/summit-recap", has_speaker_subpage=False)

        assert gate.evaluate(event, request_de, WINDOW).rejection_reason == "blog_or_news"

    def test_blog_with_genuine_speaker_section_is_scored(self, gate, request_de):
        event = make_event("https://fintech.de/news/summit-2026")

        assert gate.evaluate(event, request_de, WINDOW).status == EventStatus.ACCEPTED


class TestQualityScore:
    """Weighted signals."""

    def test_full_signals_score_one(self, gate, request_de):
        result = gate.evaluate(make_event(), request_de, WINDOW)

        assert result.quality_score == pytest.approx(1.0)
        assert result.date_status == DateWindowStatus.IN_WINDOW
        assert result.status == EventStatus.ACCEPTED

    def test_date_within_tolerance_earns_half_the_date_weight(self, gate, request_de):
        result = gate.evaluate(make_event(date_iso="2026-04-15"), request_de, WINDOW)

        assert result.date_status == DateWindowStatus.WITHIN_TOLERANCE
        assert result.quality_score == pytest.approx(0.85)

    def test_out_of_range_date_earns_nothing(self, gate, request_de):
        result = gate.evaluate(make_event(date_iso="2027-01-15"), request_de, WINDOW)

        assert result.date_status == DateWindowStatus.OUT_OF_RANGE
        assert result.quality_score == pytest.approx(0.70)

    def test_wrong_country_loses_country_weight(self, gate, request_de):
        result = gate.evaluate(make_event(country="France", city="Paris"), request_de, WINDOW)

        assert result.quality_score == pytest.approx(0.80)


class TestAcceptanceRules:
    """High threshold alone, or low threshold plus date and speakers."""

    def test_accepted_events_meet_a_threshold_rule(self, gate, request_de):
        events = [
            make_event(),
            make_event(speakers=[], has_speaker_subpage=False),
            make_event(date_iso=None, venue=None, city=None, speakers=[], has_speaker_subpage=False),
            make_event(country="France", city=None, venue=None, speakers=[Speaker(name="Anna Schmidt")]),
        ]
        thresholds = gate.thresholds

        for event in events:
            result = gate.evaluate(event, request_de, WINDOW)
            if result.status != EventStatus.ACCEPTED:
                continue
            high = result.quality_score >= thresholds.high_quality_threshold
            low = (
                result.quality_score >= gate.low_threshold
                and result.date_status in (DateWindowStatus.IN_WINDOW, DateWindowStatus.WITHIN_TOLERANCE)
                and len(result.speakers) >= thresholds.min_speakers
            )
            assert high or low

    def test_low_threshold_path_needs_date_and_speakers(self, request_de):
        snapshot = make_snapshot(high_quality_threshold=0.9, low_quality_threshold=0.3)
        gate = QualityGate(snapshot)
        event = make_event(venue=None, city=None, country="France", has_speaker_subpage=False)

        accepted = gate.evaluate(event, request_de, WINDOW)
        no_date = gate.evaluate(event.model_copy(update={"date_iso": None}), request_de, WINDOW)
        one_speaker = gate.evaluate(
            event.model_copy(update={"speakers": [Speaker(name="Anna Schmidt")]}),
            request_de,
            WINDOW,
        )

        assert accepted.quality_score == pytest.approx(0.5)
        assert accepted.status == EventStatus.ACCEPTED
        assert no_date.rejection_reason == "below_low_threshold"
        assert one_speaker.rejection_reason == "too_few_speakers"

    def test_low_path_rejection_reasons(self, request_de):
        snapshot = make_snapshot(high_quality_threshold=0.95, low_quality_threshold=0.3)
        gate = QualityGate(snapshot)

        out_of_range = gate.evaluate(make_event(date_iso="2027-06-01"), request_de, WINDOW)
        few_speakers = gate.evaluate(
            make_event(speakers=[Speaker(name="Anna Schmidt")]),
            request_de,
            WINDOW,
        )

        assert out_of_range.rejection_reason == "date_out_of_range"
        assert few_speakers.rejection_reason == "too_few_speakers"

    def test_strictness_nudges_low_threshold_only(self, snapshot):
        strict = QualityGate(snapshot, PrecisionWeights(quality_strictness=10))
        lenient = QualityGate(snapshot, PrecisionWeights(quality_strictness=0))

        assert strict.low_threshold == pytest.approx(0.35)
        assert lenient.low_threshold == pytest.approx(0.25)
        assert strict.thresholds.high_quality_threshold == lenient.thresholds.high_quality_threshold

    def test_early_stop_hit(self, gate, request_de):
        accepted = gate.evaluate(make_event(), request_de, WINDOW)
        rejected = gate.evaluate(make_event(title="404"), request_de, WINDOW)

        assert gate.is_early_stop_hit(accepted)
        assert not gate.is_early_stop_hit(rejected)


class TestDateAndCountry:
    """Window relation and region matching."""

    def test_tolerance_is_clamped(self, snapshot):
        thresholds = snapshot.thresholds
        short = QualityWindow(date_from=date(2026, 3, 1), date_to=date(2026, 3, 3))
        long = QualityWindow(date_from=date(2026, 1, 1), date_to=date(2026, 3, 31))

        assert date_tolerance_days(short, thresholds) == 30
        assert date_tolerance_days(WINDOW, thresholds) == 60
        assert date_tolerance_days(long, thresholds) == 60

    def test_missing_or_malformed_date(self, snapshot):
        assert date_status(None, WINDOW, snapshot.thresholds) == DateWindowStatus.NO_DATE
        assert date_status("next spring", WINDOW, snapshot.thresholds) == DateWindowStatus.NO_DATE

    def test_country_falls_back_to_tld_then_city(self, snapshot):
        by_tld = to_meta(make_event("https://summit.de", country=None, city=None), snapshot)
        by_city = to_meta(make_event("https://summit.com", country=None, city="Hamburg"), snapshot)
        neither = to_meta(make_event("https://summit.com", country=None, city="Paris"), snapshot)

        assert country_matches(by_tld, "DE")
        assert country_matches(by_city, "Germany")
        assert not country_matches(neither, "DE")

    def test_unknown_region_always_matches(self, snapshot):
        meta = to_meta(make_event(country="France"), snapshot)

        assert country_matches(meta, None)
        assert country_matches(meta, "Atlantis")

    def test_aggregator_host_is_not_official(self, snapshot):
        meta = to_meta(make_event("https://www.eventbrite.de/e/fintech", host="eventbrite.de"), snapshot)

        assert meta.is_official_domain is False
