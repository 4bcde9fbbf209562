"""
Unit tests for candidate prioritization.

Tests LLM scoring, the heuristic fallback on timeout, truncation and
malformed output, and the total order returned for every input.
"""

import pytest

from eventscout.core.exceptions import LLMMalformedOutput, LLMTimeout
from eventscout.services.event_models import CandidateScore, CandidateScoreList
from eventscout.services.event_search.llm import FinishReason, LLMResponse
from eventscout.services.event_search.prioritizer import (
    PrioritizationEngine,
    heuristic_score,
    score_from_judgement,
)

from ..pipeline_test_helpers import FakeLLM, make_candidate, make_config, make_request


def _candidates():
    return [
        make_candidate("https://blog.example.com/news/fintech-roundup", order=0, title="Fintech news roundup"),
        make_candidate("https://fintech-kongress.de/2026/speakers", order=1, title="Fintech Kongress 2026"),
        make_candidate("https://example.org/events", order=2, title="Upcoming events"),
        make_candidate("https://paymentsforum.de", order=3, title="Payments Forum"),
    ]


def _judge(index, **signals):
    return CandidateScore(index=index, is_event=signals.pop("is_event", True), **signals)


@pytest.mark.asyncio
class TestLLMPrioritization:
    """Scores come from the batched structured call."""

    async def test_llm_scores_order_candidates(self, config, request_de):
        def responder(prompt, schema, call_no):
            assert schema is CandidateScoreList
            return CandidateScoreList(
                scores=[
                    _judge(0, is_event=False),
                    _judge(1, has_agenda=True, has_speakers=True, is_recent=True, is_relevant=True),
                    _judge(2, is_event=False),
                    _judge(3, has_speakers=True, is_relevant=True, is_country_relevant=True),
                ],
            )

        engine = PrioritizationEngine(config, FakeLLM(responder))

        result = await engine.prioritize(_candidates(), make_request())

        assert [c.discovery_order for c in result.candidates] == [1, 3, 0, 2]
        assert result.candidates[0].priority_score == 1.0
        assert result.log.detail["method"] == "llm"
        assert result.log.detail["heuristic_scored"] == 0

    async def test_candidates_missing_from_output_get_heuristic_scores(self, config, request_de):
        llm = FakeLLM(lambda prompt, schema, n: CandidateScoreList(scores=[_judge(1, has_speakers=True)]))
        engine = PrioritizationEngine(config, llm)

        result = await engine.prioritize(_candidates(), request_de)

        assert len(result.candidates) == 4
        assert all(c.priority_score is not None for c in result.candidates)
        assert result.log.detail["llm_scored"] == 1
        assert result.log.detail["heuristic_scored"] == 3

    async def test_out_of_range_indexes_are_ignored(self, config, request_de):
        llm = FakeLLM(lambda prompt, schema, n: CandidateScoreList(scores=[_judge(17)]))
        engine = PrioritizationEngine(config, llm)

        result = await engine.prioritize(_candidates(), request_de)

        assert result.log.detail["llm_scored"] == 0

    async def test_token_budget_includes_reasoning_overhead(self, request_de):
        llm = FakeLLM(lambda prompt, schema, n: CandidateScoreList())
        engine = PrioritizationEngine(make_config(reasoning_overhead_tokens=1000), llm)

        await engine.prioritize(_candidates(), request_de)

        assert llm.calls[0]["max_output_tokens"] == 200 + 60 * 4 + 1000
        assert llm.calls[0]["timeout"] == 15.0

    async def test_prompt_lists_every_candidate(self, config, request_de):
        llm = FakeLLM(lambda prompt, schema, n: CandidateScoreList())
        engine = PrioritizationEngine(config, llm)

        await engine.prioritize(_candidates(), request_de)

        prompt = llm.calls[0]["prompt"]
        for index, candidate in enumerate(_candidates()):
            assert f"[{index}]" in prompt
            assert candidate.url in prompt

    async def test_complete_scores_are_cached(self, config, request_de, memory_cache):
        llm = FakeLLM(
            lambda prompt, schema, n: CandidateScoreList(scores=[_judge(i) for i in range(4)]),
        )
        engine = PrioritizationEngine(config, llm, memory_cache)

        await engine.prioritize(_candidates(), request_de)
        second = await engine.prioritize(_candidates(), request_de)

        assert len(llm.calls) == 1
        assert second.log.detail["method"] == "cache"


@pytest.mark.asyncio
class TestHeuristicFallback:
    """Every failure mode falls back to the heuristic without dropping candidates."""

    @pytest.mark.parametrize(
        "failure",
        [
            LLMTimeout("timed out after 15s"),
            LLMMalformedOutput("CandidateScoreList output failed validation"),
            LLMResponse(output=None, finish_reason=FinishReason.TRUNCATED),
        ],
    )
    async def test_llm_failure_scores_every_candidate(self, config, request_de, failure):
        engine = PrioritizationEngine(config, FakeLLM(lambda prompt, schema, n: failure))
        candidates = _candidates()

        result = await engine.prioritize(candidates, request_de)

        assert sorted(c.url for c in result.candidates) == sorted(c.url for c in candidates)
        assert result.log.detail["method"] == "heuristic"
        assert result.log.detail["heuristic_scored"] == len(candidates)
        keys = [(-c.priority_score, c.discovery_order) for c in result.candidates]
        assert keys == sorted(keys)

    async def test_timeout_reason_is_logged(self, config, request_de):
        engine = PrioritizationEngine(config, FakeLLM(lambda p, s, n: LLMTimeout("slow")))

        result = await engine.prioritize(_candidates(), request_de)

        assert result.log.detail["fallback_reason"] == "LLMTimeout"

    async def test_without_llm_uses_heuristic(self, config, request_de):
        result = await PrioritizationEngine(config, None).prioritize(_candidates(), request_de)

        assert result.log.detail["fallback_reason"] == "llm_disabled"
        assert len(result.candidates) == 4

    async def test_empty_input(self, config, request_de):
        llm = FakeLLM()

        result = await PrioritizationEngine(config, llm).prioritize([], request_de)

        assert result.candidates == []
        assert llm.calls == []


class TestScoring:
    """Score functions."""

    def test_judgement_weights_sum_to_one(self):
        judgement = CandidateScore(
            index=0,
            is_event=True,
            has_agenda=True,
            has_speakers=True,
            is_recent=True,
            is_relevant=True,
            is_country_relevant=True,
        )

        assert score_from_judgement(judgement) == 1.0

    def test_country_bonus(self):
        assert score_from_judgement(_judge(0, is_country_relevant=True)) == pytest.approx(0.35)

    def test_heuristic_prefers_event_pages(self, request_de):
        event = make_candidate("https://fintech-kongress.de/2026/speakers", title="Fintech Kongress 2026")
        listing = make_candidate("https://example.org/events", title="Upcoming events", snippet="")
        blog = make_candidate("https://example.com/blog/fintech-trends", title="Trends", snippet="")

        assert heuristic_score(event, request_de) > heuristic_score(listing, request_de)
        assert heuristic_score(event, request_de) > heuristic_score(blog, request_de)

    def test_heuristic_is_bounded(self, request_de):
        candidate = make_candidate("https://www.reddit.com/r/events", title="", snippet="", is_aggregator=True)

        assert 0.0 <= heuristic_score(candidate, request_de) <= 1.0
