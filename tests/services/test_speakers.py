"""
Unit tests for speaker validation and page chunking.
"""

import pytest

from eventscout.services.event_models import FetchedPage, Speaker
from eventscout.services.event_search.chunking import (
    build_chunks,
    chunk_page,
    fixed_chunks,
    speaker_heading_offsets,
)
from eventscout.services.event_search.speakers import (
    filter_speakers,
    is_likely_person,
    is_speaker_section,
)


class TestIsLikelyPerson:
    """Person validation rules"""

    @pytest.mark.parametrize(
        "name,reason",
        [
            ("Xyz", "empty_or_short"),
            ("Register Now", "ui_element"),
            ("Navigating Regulation", "action_verb_phrase"),
            ("Fintech Summit", "non_person_keyword"),
            ("Keynote Panel", "non_person_keyword"),
            ("Payment GmbH", "org_suffix_in_name"),
            ("Madonna", "single_word_name"),
            ("Anna Maria Louisa Schmidt Weber", "name_too_long"),
        ],
    )
    def test_rejections(self, name, reason):
        check = is_likely_person(name)

        assert check.ok is False
        assert check.reasons == [reason]

    @pytest.mark.parametrize(
        "name",
        ["Anna Schmidt", "Thomas Weber", "Dr. Müller", "Prof. Dr. Klaus Weber", "Jan van der Berg"],
    )
    def test_people_pass(self, name):
        assert is_likely_person(name).ok is True

    def test_name_shape_without_common_given_name(self):
        check = is_likely_person("Ludwig van Beethoven")

        assert check.ok is True
        assert check.reasons == ["no_common_given_name"]

    def test_given_name_rescues_odd_casing(self):
        check = is_likely_person("anna schmidt")

        assert check.ok is True
        assert check.reasons == ["fails_name_shape"]

    def test_org_suffix_in_org_field_is_noted(self):
        check = is_likely_person("Thomas Weber", role="CTO", org="Bank AG")

        assert check.ok is True
        assert "org_field_has_org_suffix" in check.reasons


class TestFilterSpeakers:
    """List filtering"""

    def test_keeps_people_in_order_without_duplicates(self):
        raw = [
            Speaker(name="Anna Schmidt", role="CEO"),
            Speaker(name="anna schmidt"),
            Speaker(name="Register Now"),
            Speaker(name="Thomas Weber", org="Bank AG"),
            Speaker(name="Fintech Forum"),
        ]

        kept = filter_speakers(raw)

        assert [s.name for s in kept] == ["Anna Schmidt", "Thomas Weber"]
        assert kept[0].role == "CEO"

    def test_empty(self):
        assert filter_speakers([]) == []


class TestSpeakerSections:
    """Speaker heading detection"""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Speakers", True),
            ("Unsere Referenten", True),
            ("Über die Referenten", True),
            ("Meet the team", True),
            ("Keynote", True),
            ("Agenda", False),
            ("Tickets & Preise", False),
            ("", False),
        ],
    )
    def test_is_speaker_section(self, text, expected):
        assert is_speaker_section(text) is expected

    def test_heading_offsets(self):
        text = "# Intro\nText\n## Speakers\nAnna Schmidt\n"

        assert speaker_heading_offsets(text) == [13]

    def test_long_lines_are_not_headings(self):
        text = "Our speakers " + "talk about payments " * 10 + "\n"

        assert speaker_heading_offsets(text) == []


class TestChunking:
    """Chunk order for extraction"""

    def test_fixed_chunks_overlap(self):
        assert fixed_chunks("a" * 10, chunk_size=4, overlap=1) == [(0, "aaaa"), (3, "aaaa"), (6, "aaaa")]

    def test_fixed_chunks_clamp_overlap(self):
        pieces = fixed_chunks("abcdef", chunk_size=2, overlap=5)

        assert [start for start, _ in pieces] == [0, 1, 2, 3, 4]

    def test_fixed_chunks_empty(self):
        assert fixed_chunks("") == []

    def test_speaker_chunks_start_at_headings(self):
        text = "intro " * 100 + "\n## Speakers\n" + "Anna Schmidt, CEO\n" * 5
        page = FetchedPage(url="https://x.de", content=text)

        speaker_chunks, other_chunks = chunk_page(page, chunk_size=200, overlap=0)

        assert len(speaker_chunks) == 1
        assert speaker_chunks[0].is_speaker_section
        assert speaker_chunks[0].text.startswith("## Speakers")
        covered = (speaker_chunks[0].start, speaker_chunks[0].start + len(speaker_chunks[0].text))
        for chunk in other_chunks:
            assert not (covered[0] <= chunk.start and chunk.start + len(chunk.text) <= covered[1])
        assert other_chunks[0].start == 0

    def test_build_chunks_order(self):
        main = FetchedPage(
            url="https://x.de/event",
            content="Head text\n" + "x" * 300 + "\n## Speakers\nAnna Schmidt\n",
        )
        subpage = FetchedPage(url="https://x.de/speakers", content="Anna Schmidt, CEO\n" * 30)

        chunks = build_chunks(main, [subpage], chunk_size=200, overlap=0)

        assert [(c.url, c.start) for c in chunks] == [
            ("https://x.de/event", 0),
            ("https://x.de/event", 311),
            ("https://x.de/speakers", 0),
            ("https://x.de/event", 200),
            ("https://x.de/speakers", 200),
            ("https://x.de/speakers", 400),
        ]
        assert chunks[1].is_speaker_section
        assert chunks[0].render().startswith("[Source: https://x.de/event]\nHead text")
