"""
Unit tests for eventscout/utils/url.py

Test Coverage:
- canonicalize_url(): candidate deduplication keys
- extract_host(): host extraction
- to_absolute_url() / extract_links(): link resolution on event pages
- score_subpage_url() / select_subpages(): speaker and agenda sub-page choice
"""

import pytest

from eventscout.utils.url import (
    canonicalize_url,
    extract_host,
    extract_links,
    has_country_tld,
    has_speaker_path,
    is_aggregator_host,
    score_subpage_url,
    select_subpages,
    to_absolute_url,
)


class TestCanonicalizeUrl:
    """Test canonicalize_url() normalization"""

    @pytest.mark.parametrize(
        "url,expected",
        [
            (
                "https://WWW.Example.de/Speakers/?utm_source=x&b=2&a=1#top",
                "https://example.de/Speakers?a=1&b=2",
            ),
            ("example.de", "https://example.de"),
            ("https://example.de:443/", "https://example.de"),
            ("http://example.de:80/programm", "http://example.de/programm"),
            ("https://example.de/?gclid=abc&fbclid=def", "https://example.de"),
            ("", ""),
        ],
    )
    def test_canonical_forms(self, url, expected):
        assert canonicalize_url(url) == expected

    def test_equivalent_links_compare_equal(self):
        assert canonicalize_url("https://www.fintech.de/2026/") == canonicalize_url(
            "https://fintech.de/2026#agenda",
        )


class TestHostHelpers:
    """Test host-level helpers"""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.Fintech.de/x", "fintech.de"),
            ("fintech.de/path", "fintech.de"),
            ("http://[::1", ""),
        ],
    )
    def test_extract_host(self, url, expected):
        assert extract_host(url) == expected

    def test_aggregator_subdomains_match(self):
        domains = ["eventbrite.com", "meetup.com"]

        assert is_aggregator_host("de.eventbrite.com", domains)
        assert is_aggregator_host("Meetup.com", domains)
        assert not is_aggregator_host("noteventbrite.com", domains)

    def test_country_tld(self):
        assert has_country_tld("fintech-kongress.de", ".de")
        assert not has_country_tld("fintech-kongress.com", ".de")
        assert not has_country_tld("fintech-kongress.de", None)

    def test_speaker_path(self):
        assert has_speaker_path("https://x.de/2026/speakers")
        assert has_speaker_path("https://x.de/programm")
        assert not has_speaker_path("https://x.de/about")


class TestLinkResolution:
    """Test to_absolute_url() and extract_links()"""

    BASE = "https://x.de/de/event"

    @pytest.mark.parametrize("href", ["#top", "mailto:info@x.de", "javascript:void(0)", "tel:+49301234", "", None])
    def test_non_http_links_are_dropped(self, href):
        assert to_absolute_url(href, self.BASE) is None

    @pytest.mark.parametrize(
        "href,expected",
        [
            ("https://other.de/x", "https://other.de/x"),
            ("//cdn.x.de/a", "https://cdn.x.de/a"),
            ("/speakers", "https://x.de/de/speakers"),
            ("/de/speakers", "https://x.de/de/speakers"),
            ("agenda", "https://x.de/de/agenda"),
        ],
    )
    def test_relative_links(self, href, expected):
        assert to_absolute_url(href, self.BASE) == expected

    def test_root_relative_without_language_segment(self):
        assert to_absolute_url("/speakers", "https://x.de/event") == "https://x.de/speakers"

    def test_base_href_is_honored(self):
        assert to_absolute_url("speakers", "https://x.de/a/b", "/conf/") == "https://x.de/conf/speakers"

    def test_unresolvable_base(self):
        assert to_absolute_url("speakers", "not a url") is None

    def test_extract_links_in_document_order(self):
        html = (
            '<base href="https://x.de/2026/">'
            '<a href="speakers">Speakers</a>'
            '<a class="anchor" href="#top">Top</a>'
            '<a href="speakers">Again</a>'
            "<a href='https://y.de'>Y</a>"
        )

        assert extract_links(html, "https://x.de/2026/index") == [
            "https://x.de/2026/speakers",
            "https://y.de",
        ]

    def test_extract_links_from_empty_html(self):
        assert extract_links("", "https://x.de") == []


class TestSubpageSelection:
    """Test score_subpage_url() and select_subpages()"""

    def test_speakers_rank_above_agenda(self):
        speakers = score_subpage_url("https://x.de/speakers")
        agenda = score_subpage_url("https://x.de/agenda")

        assert speakers > agenda > 0

    @pytest.mark.parametrize(
        "url",
        ["https://x.de/about", "https://x.de/tickets", "https://x.de/register-speakers", "https://x.de/impressum"],
    )
    def test_irrelevant_or_excluded_links_score_zero(self, url):
        assert score_subpage_url(url) == 0

    def test_select_same_host_best_first(self):
        links = [
            "https://x.de/event",
            "https://x.de/agenda",
            "https://www.x.de/speakers/",
            "https://other.de/speakers",
            "https://x.de/tickets",
            "https://x.de/agenda#day2",
        ]

        assert select_subpages("https://x.de/event", links, 3) == [
            "https://x.de/speakers",
            "https://x.de/agenda",
        ]

    def test_limit_is_respected(self):
        links = ["https://x.de/speakers", "https://x.de/agenda"]

        assert select_subpages("https://x.de", links, 1) == ["https://x.de/speakers"]
        assert select_subpages("https://x.de", links, 0) == []
