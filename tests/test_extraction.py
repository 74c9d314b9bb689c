"""Tests for result compaction, model extraction and the LinkedIn fallback."""
import asyncio
import json

import pytest

from personfinder.models.person import validate_candidates
from personfinder.models.search import SearchHit
from personfinder.services.extraction import (
    FALLBACK_CONFIDENCE,
    ExtractionPipeline,
    ResultCompactor,
    linkedin_fallback,
    recover_json,
)


def make_hits(count):
    return [
        SearchHit(
            title=f"Jane Doe {i}",
            url=f"https://example.com/{i}",
            snippet=f"snippet {i}",
            provider="brave",
        )
        for i in range(count)
    ]


VALID_RESPONSE = json.dumps(
    {
        "candidates": [
            {
                "fullName": "Jane Doe",
                "professions": ["Nurse", "nurse"],
                "locations": ["NYC"],
                "social": {"linkedin": "@janedoe"},
                "sources": [{"provider": "brave", "url": "https://example.com/0"}],
                "confidence": 0.9,
            }
        ]
    }
)


class ScriptedLLM:
    """Replays one scripted step per call: a string, an exception, or "slow"."""

    def __init__(self, steps):
        self.steps = list(steps)
        self.user_prompts = []

    async def complete(self, system_prompt, user_prompt):
        self.user_prompts.append(user_prompt)
        step = self.steps.pop(0)
        if step == "slow":
            await asyncio.sleep(5)
        if isinstance(step, Exception):
            raise step
        return step

    def hit_counts(self):
        return [len(json.loads(p.split("INPUT: ", 1)[1])) for p in self.user_prompts]


class TestResultCompactor:
    def test_truncates_and_strips_markup(self):
        compactor = ResultCompactor()
        compact = compactor.compact_hit(
            {
                "title": "T" * 300,
                "link": " https://example.com/a ",
                "snippet": "<strong>Jane</strong>   Doe " + "x" * 800,
                "provider": "tavily",
            }
        )
        assert len(compact.title) == 160
        assert compact.url == "https://example.com/a"
        assert compact.snippet.startswith("Jane Doe x")
        assert len(compact.snippet) == 500
        assert compact.provider == "tavily"

    def test_accepts_search_hits(self):
        compact = ResultCompactor().compact_hit(make_hits(1)[0])
        assert compact.to_dict() == {
            "title": "Jane Doe 0",
            "url": "https://example.com/0",
            "snippet": "snippet 0",
            "provider": "brave",
        }

    def test_variants_shrink(self):
        variants = ResultCompactor().variants(make_hits(20))
        assert [len(v) for v in variants] == [12, 8, 5]

    def test_variants_with_few_hits(self):
        variants = ResultCompactor().variants(make_hits(3))
        assert [len(v) for v in variants] == [3, 3, 3]


class TestRecoverJson:
    def test_fenced_block(self):
        assert recover_json('```json\n{"candidates": []}\n```') == '{"candidates": []}'

    def test_surrounding_prose(self):
        text = 'Sure! Here you go: {"a": {"b": 1}} Hope that helps.'
        assert recover_json(text) == '{"a": {"b": 1}}'

    def test_no_braces(self):
        assert recover_json("  no json here  ") == "no json here"

    def test_none(self):
        assert recover_json(None) == ""


class TestValidation:
    def test_coerces_model_output(self):
        candidates = validate_candidates(
            {
                "candidates": [
                    {
                        "fullName": " Jane Doe ",
                        "professions": [" Nurse ", None, ""],
                        "gender": "Female",
                        "age": 33.6,
                        "confidence": 1.7,
                        "social": None,
                        "sources": [
                            {"provider": "Google", "url": "https://g.example"},
                            {"provider": "TAVILY", "url": "https://t.example"},
                        ],
                        "unexpected": "ignored",
                    }
                ]
            }
        )
        jane = candidates[0]
        assert jane.full_name == "Jane Doe"
        assert jane.professions == ["Nurse"]
        assert jane.gender == "female"
        assert jane.age == 34
        assert jane.confidence == 1.0
        assert jane.social.linkedin is None
        assert [s.provider for s in jane.sources] == ["tavily"]

    def test_missing_full_name_fails(self):
        with pytest.raises(Exception):
            validate_candidates({"candidates": [{"professions": ["Nurse"]}]})

    def test_missing_candidates_is_empty(self):
        assert validate_candidates({}) == []


class TestExtractionPipeline:
    @pytest.mark.asyncio
    async def test_first_valid_response_wins_and_is_normalized(self):
        llm = ScriptedLLM([VALID_RESPONSE])
        pipeline = ExtractionPipeline(llm, timeout_s=1)

        candidates = await pipeline.run(make_hits(20))

        assert llm.hit_counts() == [12]
        assert len(candidates) == 1
        jane = candidates[0]
        assert jane.professions == ["Nurse"]
        assert jane.locations == ["New York, USA"]
        assert jane.social.linkedin == "https://www.linkedin.com/in/janedoe"

    @pytest.mark.asyncio
    async def test_retries_with_smaller_context(self):
        llm = ScriptedLLM(["slow", "   ", "```json\n" + VALID_RESPONSE + "\n```"])
        pipeline = ExtractionPipeline(llm, timeout_s=0.05)

        candidates = await pipeline.run(make_hits(20))

        assert llm.hit_counts() == [12, 8, 5]
        assert [c.full_name for c in candidates] == ["Jane Doe"]

    @pytest.mark.asyncio
    async def test_schema_failure_moves_to_next_variant(self):
        invalid = json.dumps({"candidates": [{"fullName": ""}]})
        llm = ScriptedLLM([invalid, VALID_RESPONSE])
        pipeline = ExtractionPipeline(llm, timeout_s=1)

        candidates = await pipeline.run(make_hits(20))

        assert llm.hit_counts() == [12, 8]
        assert len(candidates) == 1

    @pytest.mark.asyncio
    async def test_all_attempts_fail_returns_empty(self):
        llm = ScriptedLLM([RuntimeError("boom"), "not json", '{"candidates": "nope"}'])
        pipeline = ExtractionPipeline(llm, timeout_s=1)

        assert await pipeline.run(make_hits(20)) == []
        assert len(llm.user_prompts) == 3

    @pytest.mark.asyncio
    async def test_no_hits_skips_the_model(self):
        llm = ScriptedLLM([])
        assert await ExtractionPipeline(llm).run([]) == []
        assert llm.user_prompts == []

    def test_prompt_lists_providers(self):
        pipeline = ExtractionPipeline(ScriptedLLM([]))
        compactor = ResultCompactor()
        system_prompt, user_prompt = pipeline.build_prompts(compactor.compact(make_hits(2), 12))
        assert "Never fabricate" in system_prompt
        assert "perplexity|gemini|brave|tavily" in user_prompt
        assert json.loads(user_prompt.split("INPUT: ", 1)[1])[1]["url"] == "https://example.com/1"


class TestLinkedInFallback:
    def test_builds_low_confidence_candidates(self):
        hits = [
            SearchHit(
                title="Jane Doe - Nurse - Mercy Hospital | LinkedIn",
                url="https://www.linkedin.com/in/jane-doe-123?trk=public",
                snippet="",
                provider="brave",
            ),
            SearchHit(
                title="Jane Doe | LinkedIn",
                url="https://www.linkedin.com/in/jane-doe-123",
                snippet="",
                provider="tavily",
            ),
            SearchHit(
                title="LinkedIn profile",
                url="https://uk.linkedin.com/in/john_smith",
                snippet="",
                provider="unknown-engine",
            ),
            SearchHit(title="Jane Doe's blog", url="https://janedoe.example", snippet=""),
        ]

        candidates = linkedin_fallback(hits)

        assert [c.full_name for c in candidates] == ["Jane Doe", "John Smith"]
        jane, john = candidates
        assert jane.social.linkedin == "https://www.linkedin.com/in/jane-doe-123"
        assert jane.confidence == FALLBACK_CONFIDENCE
        assert [(s.provider, s.url) for s in jane.sources] == [
            ("brave", "https://www.linkedin.com/in/jane-doe-123")
        ]
        assert john.sources == []

    def test_no_profiles(self):
        assert linkedin_fallback(make_hits(3)) == []

    def test_profile_url_without_handle_is_skipped(self):
        hits = [SearchHit(title="LinkedIn", url="https://www.linkedin.com/in/", snippet="", provider="brave")]
        assert linkedin_fallback(hits) == []
