"""Tests for story_memory.relevance: extraction, parsing and reconciliation.

The classifier is always a StubLLM with queued replies; nothing here talks
to a real backend.
"""

import asyncio
import json
from uuid import uuid4

import pytest

from story_memory.llm import LLMError
from story_memory.relevance import (
    RelevanceMatcher,
    RelevanceParseError,
    RelevanceResult,
    extract_json,
    parse_answer,
)
from story_memory.store import StoryMemory


def _reply(triggered=(), entities=(), explanation=None) -> str:
    body: dict = {
        "triggered_consequences": list(triggered),
        "relevant_entities": list(entities),
    }
    if explanation is not None:
        body["explanation"] = explanation
    return json.dumps(body)


@pytest.fixture
def riverside() -> StoryMemory:
    memory = StoryMemory()
    memory.create_entity("npc", "Baron Aldric")
    memory.create_entity("organization", "Town Guards")
    memory.create_entity("location", "Riverside Village")
    return memory


# ---------------------------------------------------------------------------
# extract_json
# ---------------------------------------------------------------------------

class TestExtractJson:
    def test_plain_json_unchanged(self) -> None:
        text = '{"triggered_consequences": [], "relevant_entities": []}'
        assert extract_json(text) == text

    def test_json_fence(self) -> None:
        text = '```json\n{"triggered_consequences": ["abc"], "relevant_entities": ["Guard"]}\n```'
        assert extract_json(text) == (
            '{"triggered_consequences": ["abc"], "relevant_entities": ["Guard"]}'
        )

    def test_bare_fence(self) -> None:
        text = '```\n{"triggered_consequences": []}\n```'
        assert extract_json(text) == '{"triggered_consequences": []}'

    def test_surrounding_prose_and_whitespace(self) -> None:
        text = '  Here you go:\n```json\n{"a": 1}\n```\nHope that helps.  '
        assert extract_json(text) == '{"a": 1}'

    def test_unterminated_fence_returns_trimmed_text(self) -> None:
        text = '  ```json\n{"a": 1}\n'
        assert extract_json(text) == '```json\n{"a": 1}'


# ---------------------------------------------------------------------------
# parse_answer
# ---------------------------------------------------------------------------

class TestParseAnswer:
    def test_extra_fields_ignored(self) -> None:
        answer = parse_answer('{"triggered_consequences": ["x"], "confidence": 0.9}')
        assert answer.triggered_consequences == ["x"]
        assert answer.relevant_entities == []
        assert answer.explanation is None

    def test_lenient_types(self) -> None:
        answer = parse_answer(json.dumps({
            "triggered_consequences": "abc",
            "relevant_entities": ["Guard", 3, None, "Baron"],
            "explanation": ["not", "text"],
        }))
        assert answer.triggered_consequences == []
        assert answer.relevant_entities == ["Guard", "Baron"]
        assert answer.explanation is None

    def test_invalid_json(self) -> None:
        with pytest.raises(RelevanceParseError) as exc:
            parse_answer("The guards should attack!")
        assert exc.value.payload == "The guards should attack!"

    def test_non_object_top_level(self) -> None:
        with pytest.raises(RelevanceParseError, match="expected a JSON object"):
            parse_answer('["abc"]')


# ---------------------------------------------------------------------------
# RelevanceResult
# ---------------------------------------------------------------------------

class TestRelevanceResult:
    def test_default_is_empty(self) -> None:
        result = RelevanceResult()
        assert result.is_empty
        assert not result.has_triggered_consequences
        assert not result.has_relevant_context

    def test_facts_alone_are_not_empty(self) -> None:
        result = RelevanceResult(relevant_facts=[uuid4()])
        assert not result.is_empty
        assert result.has_relevant_context

    def test_triggered_ids_are_strings(self) -> None:
        cid = uuid4()
        assert RelevanceResult(triggered_consequences=[cid]).triggered_ids == [str(cid)]


# ---------------------------------------------------------------------------
# RelevanceMatcher.check
# ---------------------------------------------------------------------------

class TestCheck:
    async def test_no_pending_consequences_skips_classifier(self, riverside, stub_llm) -> None:
        llm = stub_llm({})
        result = await RelevanceMatcher(llm).check("I enter the village", "Road", riverside)
        assert result.is_empty
        assert llm.calls == []

    async def test_prompt_contents(self, riverside, stub_llm) -> None:
        c = riverside.create_consequence(
            "Player enters Riverside Village", "Guards arrest the player", "major",
        )
        llm = stub_llm({"relevance": [_reply()]})
        await RelevanceMatcher(llm).check('I shout "<Aldric> & co!"', "The river road", riverside)
        stage, prompt = llm.calls[0]
        assert stage == "relevance"
        assert '"I shout "<Aldric> & co!""' in prompt
        assert "The river road" in prompt
        assert f"[{c.id}] (Major) TRIGGER: Player enters Riverside Village" in prompt
        assert '"triggered_consequences"' in prompt
        llm.assert_exhausted()

    async def test_triggered_and_relevant(self, riverside, stub_llm) -> None:
        c = riverside.create_consequence("Player enters Riverside", "Guards attack", "major")
        baron = riverside.find_entity_by_name("Baron Aldric")
        motive = riverside.add_fact(baron.id, "The baron wants revenge", "motivation")
        reply = "```json\n" + _reply([str(c.id)], ["baron aldric"], "village entry") + "\n```"
        llm = stub_llm({"relevance": [reply]})

        result = await RelevanceMatcher(llm).check("I enter the village", "Road", riverside)

        assert result.triggered_consequences == [c.id]
        assert result.relevant_entities == [baron.id]
        assert result.relevant_facts == [motive.id]
        assert result.explanation == "village entry"
        assert result.has_triggered_consequences
        assert result.has_relevant_context
        # check() only reports; the memory is unchanged
        assert c.status == "pending"

    async def test_result_is_stable_after_apply(self, riverside, stub_llm) -> None:
        c = riverside.create_consequence("Player enters Riverside", "Guards attack", "major")
        llm = stub_llm({"relevance": [_reply([str(c.id)])]})
        result = await RelevanceMatcher(llm).check("I enter the village", "Road", riverside)
        before = result.model_dump()

        assert riverside.apply_relevance(result) == [c]
        assert c.status == "triggered"
        assert result.model_dump() == before
        assert result.triggered_consequences == [c.id]

    async def test_unknown_and_duplicate_ids_dropped(self, riverside, stub_llm) -> None:
        c = riverside.create_consequence("t", "e", "minor")
        done = riverside.create_consequence("t2", "e2", "minor")
        riverside.resolve_consequence(done.id)
        reply = _reply(
            [f"  {c.id} ", str(c.id), str(done.id), "not-an-id"],
            ["Town Guards", "town guards", "Nobody"],
        )
        llm = stub_llm({"relevance": [reply]})
        result = await RelevanceMatcher(llm).check("x", "y", riverside)
        assert result.triggered_ids == [str(c.id)]
        assert len(result.relevant_entities) == 1

    async def test_fuzzy_entity_names(self, riverside, stub_llm) -> None:
        riverside.create_consequence("t", "e", "minor")
        llm = stub_llm({"relevance": [_reply(entities=["Guards"])]})
        result = await RelevanceMatcher(llm).check("x", "y", riverside)
        assert result.relevant_entities == [riverside.find_entity_id("Town Guards")]

    async def test_bread_does_not_trigger_dragon_lair(self, stub_llm) -> None:
        memory = StoryMemory()
        memory.create_entity("location", "Dragon's Lair")
        memory.create_consequence(
            "Player enters the Dragon's Lair cave",
            "The dragon wakes and attacks",
            "critical",
        )
        llm = stub_llm({"relevance": ['{"triggered_consequences": [], "relevant_entities": []}']})
        result = await RelevanceMatcher(llm).check(
            "I buy a loaf of bread from the baker", "Market Square", memory,
        )
        assert result.triggered_consequences == []
        assert not result.has_triggered_consequences
        assert memory.pending_consequence_count() == 1

    async def test_llm_error_propagates(self, riverside) -> None:
        riverside.create_consequence("t", "e", "minor")

        async def broken(stage: str, prompt: str) -> str:
            raise LLMError("Cannot connect to classifier backend")

        with pytest.raises(LLMError):
            await RelevanceMatcher(broken).check("x", "y", riverside)

    async def test_garbage_reply_raises_parse_error(self, riverside, stub_llm) -> None:
        riverside.create_consequence("t", "e", "minor")
        llm = stub_llm({"relevance": ["Yes, the guards attack."]})
        with pytest.raises(RelevanceParseError):
            await RelevanceMatcher(llm).check("x", "y", riverside)


# ---------------------------------------------------------------------------
# RelevanceMatcher.check_or_empty
# ---------------------------------------------------------------------------

class TestCheckOrEmpty:
    async def test_passes_through_success(self, riverside, stub_llm) -> None:
        c = riverside.create_consequence("t", "e", "minor")
        llm = stub_llm({"relevance": [_reply([str(c.id)])]})
        result = await RelevanceMatcher(llm).check_or_empty("x", "y", riverside)
        assert result.triggered_consequences == [c.id]

    async def test_llm_error_becomes_empty(self, riverside) -> None:
        riverside.create_consequence("t", "e", "minor")

        async def broken(stage: str, prompt: str) -> str:
            raise LLMError("HTTP 503")

        result = await RelevanceMatcher(broken).check_or_empty("x", "y", riverside)
        assert result == RelevanceResult()

    async def test_parse_error_becomes_empty(self, riverside, stub_llm) -> None:
        riverside.create_consequence("t", "e", "minor")
        llm = stub_llm({"relevance": ["not json"]})
        result = await RelevanceMatcher(llm).check_or_empty("x", "y", riverside)
        assert result.is_empty

    async def test_timeout_becomes_empty(self, riverside) -> None:
        riverside.create_consequence("t", "e", "minor")

        async def slow(stage: str, prompt: str) -> str:
            await asyncio.sleep(5)
            return _reply()

        result = await RelevanceMatcher(slow, timeout=0.01).check_or_empty("x", "y", riverside)
        assert result.is_empty

    async def test_outer_cancellation_propagates(self, riverside) -> None:
        riverside.create_consequence("t", "e", "minor")
        started = asyncio.Event()

        async def slow(stage: str, prompt: str) -> str:
            started.set()
            await asyncio.sleep(5)
            return _reply()

        task = asyncio.create_task(
            RelevanceMatcher(slow, timeout=10).check_or_empty("x", "y", riverside)
        )
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_cancelled_classifier_call_becomes_empty(self, riverside) -> None:
        c = riverside.create_consequence("t", "e", "minor")

        async def aborted(stage: str, prompt: str) -> str:
            raise asyncio.CancelledError()

        result = await RelevanceMatcher(aborted).check_or_empty("x", "y", riverside)
        assert result.is_empty
        assert c.status == "pending"
