"""Relevance matcher: asks the classifier which pending consequences fire.

The matcher holds no story state. Each check builds a prompt from the
memory's pending consequences, sends it to the classifier, and reconciles
the answer into ids that exist in the memory right now. Anything the
classifier invents (unknown ids, unknown names) is dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .llm import LLM, LLMError
from .models import ConsequenceId, EntityId, FactId, StoryFact
from .prompts import build_relevance_prompt
from .store import MAX_CONTEXT_FACTS, StoryMemory

logger = logging.getLogger(__name__)

RELEVANCE_STAGE = "relevance"
DEFAULT_TIMEOUT = 10.0


class RelevanceParseError(ValueError):
    """Raised when the classifier reply is not a usable JSON object."""

    def __init__(self, message: str, payload: str) -> None:
        super().__init__(f"{message}: {payload}")
        self.payload = payload


def extract_json(text: str) -> str:
    """Pull the JSON payload out of a reply that may be wrapped in a code fence.

    A ```json fence wins over a bare ``` fence; with neither, the trimmed
    text is returned unchanged.
    """
    text = text.strip()
    for opener in ("```json", "```"):
        start = text.find(opener)
        if start == -1:
            continue
        body = start + len(opener)
        end = text.find("```", body)
        if end != -1:
            return text[body:end].strip()
    return text


class RelevanceAnswer(BaseModel):
    """The classifier's reply, read leniently."""

    model_config = ConfigDict(extra="ignore")

    triggered_consequences: list[str] = Field(default_factory=list)
    relevant_entities: list[str] = Field(default_factory=list)
    explanation: str | None = None

    @field_validator("triggered_consequences", "relevant_entities", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    @field_validator("explanation", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None


class RelevanceResult(BaseModel):
    """What the classifier picked, as ids into the memory it was checked against."""

    triggered_consequences: list[ConsequenceId] = Field(default_factory=list)
    relevant_entities: list[EntityId] = Field(default_factory=list)
    relevant_facts: list[FactId] = Field(default_factory=list)
    explanation: str | None = None

    @property
    def triggered_ids(self) -> list[str]:
        return [str(cid) for cid in self.triggered_consequences]

    @property
    def is_empty(self) -> bool:
        return not (self.triggered_consequences or self.relevant_entities or self.relevant_facts)

    @property
    def has_triggered_consequences(self) -> bool:
        return bool(self.triggered_consequences)

    @property
    def has_relevant_context(self) -> bool:
        return bool(self.relevant_entities or self.relevant_facts)


def parse_answer(reply: str) -> RelevanceAnswer:
    payload = extract_json(reply)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise RelevanceParseError(str(e), payload) from e
    if not isinstance(data, dict):
        raise RelevanceParseError("expected a JSON object", payload)
    try:
        return RelevanceAnswer.model_validate(data)
    except ValidationError as e:
        raise RelevanceParseError(str(e), payload) from e


def reconcile(answer: RelevanceAnswer, memory: StoryMemory) -> RelevanceResult:
    """Map the classifier's strings onto what the memory actually holds."""
    pending = {str(c.id): c for c in memory.pending_consequences()}
    triggered: list[ConsequenceId] = []
    for raw in answer.triggered_consequences:
        consequence = pending.get(raw.strip())
        if consequence is None:
            logger.debug("classifier named unknown consequence %r", raw)
        elif consequence.id not in triggered:
            triggered.append(consequence.id)

    entities: list[EntityId] = []
    for name in answer.relevant_entities:
        entity_id = memory.find_entity_id(name)
        if entity_id is None:
            logger.debug("classifier named unknown entity %r", name)
        elif entity_id not in entities:
            entities.append(entity_id)

    facts: dict[FactId, StoryFact] = {}
    for entity_id in entities:
        for fact in memory.facts_about(entity_id, current_only=True):
            facts.setdefault(fact.id, fact)
    ranked = sorted(facts.values(), key=lambda f: f.importance, reverse=True)

    return RelevanceResult(
        triggered_consequences=triggered,
        relevant_entities=entities,
        relevant_facts=[f.id for f in ranked[:MAX_CONTEXT_FACTS]],
        explanation=answer.explanation,
    )


class RelevanceMatcher:
    """Semantic trigger matching against a classifier.

    Args:
        llm:     Classifier callable (see llm.LLM).
        timeout: Seconds `check_or_empty` waits before giving up.
    """

    def __init__(self, llm: LLM, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._llm = llm
        self._timeout = timeout

    async def check(
        self, player_input: str, current_location: str, memory: StoryMemory,
    ) -> RelevanceResult:
        """Ask the classifier which pending consequences `player_input` triggers.

        Does not touch the memory; pass the result to
        `StoryMemory.apply_relevance` to fire the consequences.

        Raises:
            LLMError: the classifier could not be reached.
            RelevanceParseError: the reply was not a JSON object.
        """
        if memory.pending_consequence_count() == 0:
            return RelevanceResult()

        prompt = build_relevance_prompt(
            player_input, current_location, memory.build_consequences_for_relevance(),
        )
        reply = await self._llm(RELEVANCE_STAGE, prompt)
        return reconcile(parse_answer(reply), memory)

    async def check_or_empty(
        self, player_input: str, current_location: str, memory: StoryMemory,
    ) -> RelevanceResult:
        """Like `check`, but any classifier failure means nothing is relevant.

        A classifier call that is cancelled on its own also counts as nothing
        relevant. Cancellation of the task running the turn is re-raised.
        """
        try:
            return await asyncio.wait_for(
                self.check(player_input, current_location, memory), self._timeout,
            )
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.warning("relevance check cancelled inside the classifier call")
        except TimeoutError:
            logger.warning("relevance check timed out after %ss", self._timeout)
        except LLMError as e:
            logger.warning("relevance check failed: %s", e)
        except RelevanceParseError as e:
            logger.warning("relevance reply unusable: %s", e)
        return RelevanceResult()
