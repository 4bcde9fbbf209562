"""
End-to-end tests for the event search pipeline.

Real stage components run against in-memory providers, pages and LLM
answers. Covers the happy path, window expansion, early termination, the
wall-clock budget, discovery exhaustion and template fallback.
"""

import re
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from eventscout.services.event_models import (
    EventStatus,
    PassType,
    SearchHit,
    SearchStatus,
)
from eventscout.services.event_search.discovery import DiscoveryEngine
from eventscout.services.event_search.extractor import ExtractionEngine
from eventscout.services.event_search.orchestrator import EventSearchService
from eventscout.services.event_search.prioritizer import PrioritizationEngine
from eventscout.services.event_search.rerank import RerankGate

from ..pipeline_test_helpers import (
    FakeFetcher,
    FakeLLM,
    FakeProvider,
    event_page,
    extraction_for,
    make_config,
    make_request,
    make_snapshot,
)

SOURCE = re.compile(r"\[Source: (\S+)\]")


def _urls(count):
    return [f"https://event-{i}.de" for i in range(count)]


def _provider(urls):
    return FakeProvider(
        "firecrawl",
        lambda variant: [
            SearchHit(url=url, title="Fintech Konferenz 2026", snippet="Konferenz", score=0.5)
            for url in urls
        ],
    )


def _site(titles):
    """Pages plus an LLM answering each page with its own title."""
    pages = {url: event_page(url, title, "2026-03-12") for url, title in titles.items()}

    def responder(prompt, schema, call_no):
        url = SOURCE.search(prompt).group(1)
        return extraction_for(titles[url], "2026-03-12")

    return pages, FakeLLM(responder)


@pytest.fixture
def build_service(guards, stats):
    def build(snapshot, provider, fetcher, llm, config=None, fallbacks=(), cache=None):
        config = config or make_config()
        providers = {p.name: p for p in (provider, *fallbacks)}
        return EventSearchService(
            config=config,
            config_store=SimpleNamespace(snapshot=lambda: snapshot),
            discovery=DiscoveryEngine(config, providers, guards, stats, cache),
            reranker=RerankGate(None, guards, stats, None),
            prioritizer=PrioritizationEngine(config, None),
            extractor=ExtractionEngine(config, fetcher, llm, cache),
            stats=stats,
        )

    return build


def _stages(result):
    return [(log.stage, log.pass_type) for log in result.logs]


@pytest.mark.asyncio
class TestPipeline:
    """A full run through every stage."""

    async def test_complete_run_returns_accepted_events(self, build_service):
        urls = _urls(4)
        pages, llm = _site({url: f"Fintech Summit {i}" for i, url in enumerate(urls)})
        provider = _provider(urls)
        service = build_service(make_snapshot(), provider, FakeFetcher(pages), llm)

        result = await service.search(make_request())

        assert result.success is True
        assert result.status == SearchStatus.COMPLETE
        assert sorted(e.source_url for e in result.events) == urls
        assert all(e.status == EventStatus.ACCEPTED for e in result.events)
        assert result.metadata.discovered == 4
        assert result.metadata.extracted == 4
        assert result.metadata.accepted == 4
        assert result.metadata.expanded is False
        assert result.metadata.low_confidence is False
        assert result.metadata.providers["firecrawl"]["successes"] == len(provider.calls)
        assert _stages(result) == [
            ("discovery", PassType.INITIAL),
            ("rerank", PassType.INITIAL),
            ("prioritization", PassType.INITIAL),
            ("extraction", PassType.INITIAL),
            ("quality", PassType.INITIAL),
        ]

    async def test_rejected_events_are_not_returned(self, build_service):
        urls = _urls(4)
        titles = {url: f"Fintech Summit {i}" for i, url in enumerate(urls)}
        titles[urls[1]] = "404 Page not found"
        pages, llm = _site(titles)
        service = build_service(make_snapshot(), _provider(urls), FakeFetcher(pages), llm)

        result = await service.search(make_request())

        assert urls[1] not in {e.source_url for e in result.events}
        quality_log = next(log for log in result.logs if log.stage == "quality")
        assert quality_log.detail["rejections"] == {"hard_reject_text": 1}

    async def test_config_version_is_fixed_for_the_run(self, build_service):
        urls = _urls(3)
        pages, llm = _site({url: "Fintech Summit" for url in urls})
        snapshots = iter([make_snapshot(), make_snapshot(min_solid_hits=50)])
        service = build_service(make_snapshot(), _provider(urls), FakeFetcher(pages), llm)
        service.config_store = SimpleNamespace(snapshot=lambda: next(snapshots))

        result = await service.search(make_request())

        assert result.metadata.expanded is False


@pytest.mark.asyncio
class TestAutoExpansion:
    """A sparse first pass triggers one wider pass."""

    async def test_expanded_pass_never_reprocesses_first_pass_urls(self, build_service):
        urls = _urls(6)
        titles = {url: f"Fintech Summit {i}" for i, url in enumerate(urls)}
        titles[urls[2]] = "404 Page not found"
        pages, llm = _site(titles)
        fetcher = FakeFetcher(pages)
        snapshot = make_snapshot(min_solid_hits=3, extraction_top_k=3)
        service = build_service(snapshot, _provider(urls), fetcher, llm)

        result = await service.search(make_request())

        assert result.metadata.expanded is True
        assert result.metadata.window_used.date_to == date(2026, 4, 7)
        assert all(fetcher.fetched.count(url) == 1 for url in urls)
        by_pass = {e.source_url: e.provenance.pass_type for e in result.events}
        assert by_pass[urls[0]] == PassType.INITIAL
        assert by_pass[urls[1]] == PassType.INITIAL
        assert by_pass[urls[3]] == PassType.EXPANDED
        assert len(result.events) == 5
        expanded_discovery = [
            log for log in result.logs if log.stage == "discovery" and log.pass_type == PassType.EXPANDED
        ]
        assert expanded_discovery[0].output_count == 3

    async def test_enough_accepted_events_skip_expansion(self, build_service):
        urls = _urls(3)
        pages, llm = _site({url: "Fintech Summit" for url in urls})
        service = build_service(make_snapshot(min_solid_hits=3), _provider(urls), FakeFetcher(pages), llm)

        result = await service.search(make_request())

        assert result.metadata.expanded is False
        assert all(log.pass_type == PassType.INITIAL for log in result.logs)

    async def test_no_candidates_in_either_pass(self, build_service):
        provider = FakeProvider("firecrawl", lambda variant: [])
        service = build_service(make_snapshot(), provider, FakeFetcher(), FakeLLM())

        result = await service.search(make_request())

        assert result.success is False
        assert result.status == SearchStatus.NO_CANDIDATES
        assert result.error == "discovery_exhausted"
        assert result.metadata.expanded is True
        assert [log.stage for log in result.logs] == ["discovery", "discovery"]


@pytest.mark.asyncio
class TestTermination:
    """Early stop and the wall-clock budget."""

    async def test_early_stop_cancels_remaining_extraction(self, build_service):
        urls = _urls(6)
        pages, llm = _site({url: f"Fintech Summit {i}" for i, url in enumerate(urls)})
        fetcher = FakeFetcher(pages)
        snapshot = make_snapshot(early_stop_accepted=2, early_stop_quality=0.8)
        service = build_service(
            snapshot,
            _provider(urls),
            fetcher,
            llm,
            config=make_config(extraction_concurrency=1),
        )

        result = await service.search(make_request())

        assert len(result.events) == 2
        assert len(fetcher.fetched) == 2
        assert result.metadata.expanded is False
        quality_log = next(log for log in result.logs if log.stage == "quality")
        assert quality_log.detail["early_stopped"] is True

    async def test_budget_exhaustion_returns_partial_result(self, build_service):
        urls = _urls(3)
        pages, llm = _site({url: "Fintech Summit" for url in urls})
        service = build_service(make_snapshot(), _provider(urls), FakeFetcher(pages, delay=5.0), llm)

        result = await service.search(make_request(), budget_seconds=0.3)

        assert result.success is True
        assert result.status == SearchStatus.PARTIAL
        assert result.metadata.partial is True
        assert result.events == []
        assert "quality" in [log.stage for log in result.logs]

    async def test_unexpected_failure_returns_error_result(self, build_service, stats):
        service = build_service(make_snapshot(), _provider([]), FakeFetcher(), FakeLLM())
        service.discovery = MagicMock()
        service.discovery.discover = AsyncMock(side_effect=RuntimeError("boom"))

        result = await service.search(make_request())

        assert result.success is False
        assert result.status == SearchStatus.ERROR
        assert result.error == "boom"


    async def test_failure_in_expanded_pass_keeps_accepted_events(self, build_service):
        urls = _urls(2)
        pages, llm = _site({url: f"Fintech Summit {i}" for i, url in enumerate(urls)})
        service = build_service(make_snapshot(), _provider(urls), FakeFetcher(pages), llm)
        discover = service.discovery.discover
        passes = []

        async def crash_on_second_pass(*args, **kwargs):
            passes.append(args)
            if len(passes) > 1:
                raise RuntimeError("expanded discovery crashed")
            return await discover(*args, **kwargs)

        service.discovery.discover = crash_on_second_pass

        result = await service.search(make_request())

        assert result.success is False
        assert result.status == SearchStatus.ERROR
        assert result.error == "expanded discovery crashed"
        assert sorted(e.source_url for e in result.events) == urls
        assert result.metadata.accepted == 2
        assert result.metadata.expanded is True
        assert result.metadata.partial is True

@pytest.mark.asyncio
class TestTemplates:
    """Topic lookup."""

    async def test_unknown_topic_uses_generic_template(self, build_service):
        provider = FakeProvider("firecrawl", lambda variant: [])
        service = build_service(make_snapshot(), provider, FakeFetcher(), FakeLLM())

        result = await service.search(make_request(topic="underwater basket weaving"))

        assert result.status == SearchStatus.NO_CANDIDATES
        assert any("underwater basket weaving" in query for query in provider.calls)


@pytest.mark.asyncio
class TestCachedRerun:
    """A repeated request within the cache TTL."""

    async def test_rerun_does_not_call_providers_again(self, build_service, memory_cache):
        urls = _urls(4)
        pages, llm = _site({url: f"Fintech Summit {i}" for i, url in enumerate(urls)})
        hits = [SearchHit(url=url, title="Fintech Konferenz 2026", score=0.5) for url in urls]
        seen = []

        def flaky(variant):
            seen.append(variant.query)
            if len(seen) % 2:
                raise ValueError("truncated payload")
            return hits

        primary = FakeProvider("firecrawl", flaky)
        fallback = FakeProvider("google_cse", lambda variant: hits)
        fetcher = FakeFetcher(pages)
        service = build_service(make_snapshot(), primary, fetcher, llm, fallbacks=(fallback,), cache=memory_cache)

        first = await service.search(make_request())
        calls_after_first = (len(primary.calls), len(fallback.calls), len(fetcher.fetched), len(llm.calls))
        second = await service.search(make_request())

        assert len(fallback.calls) > 0
        assert (len(primary.calls), len(fallback.calls), len(fetcher.fetched), len(llm.calls)) == calls_after_first
        assert sorted(e.source_url for e in second.events) == sorted(e.source_url for e in first.events)
        assert second.status == SearchStatus.COMPLETE
