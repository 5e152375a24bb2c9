"""Per-turn driver: everything the narrator needs before it writes a reply.

    1. advance the turn clock (expiry + decay)
    2. ask the matcher which pending consequences the input triggers
    3. fire them
    4. build the prompt blocks for the narrator

The matcher is consulted through `check_or_empty`, so a slow or broken
classifier never blocks the player; the turn just proceeds without
triggered consequences.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from .models import Consequence, ConsequenceId, EntityId
from .prompts import build_triggered_context
from .relevance import RelevanceMatcher, RelevanceResult
from .store import StoryMemory

logger = logging.getLogger(__name__)


class TurnContext(BaseModel):
    turn: int
    expired: list[ConsequenceId] = Field(default_factory=list)
    relevance: RelevanceResult = Field(default_factory=RelevanceResult)
    triggered: list[Consequence] = Field(default_factory=list)
    triggered_context: str = ""
    story_context: str = ""

    @property
    def prompt_context(self) -> str:
        """Story context followed by the triggered-consequence block."""
        return "\n".join(part for part in (self.story_context, self.triggered_context) if part)


async def begin_turn(
    memory: StoryMemory,
    matcher: RelevanceMatcher,
    player_input: str,
    current_location: str = "",
) -> TurnContext:
    expired = memory.advance_turn()
    relevance = await matcher.check_or_empty(player_input, current_location, memory)
    triggered = memory.apply_relevance(relevance)

    entity_ids: list[EntityId] = memory.extract_mentioned_entities(player_input)
    for entity_id in relevance.relevant_entities:
        if entity_id not in entity_ids:
            entity_ids.append(entity_id)

    logger.info(
        "turn %d: %d expired, %d triggered, %d relevant entities",
        memory.current_turn, len(expired), len(triggered), len(entity_ids),
    )
    return TurnContext(
        turn=memory.current_turn,
        expired=expired,
        relevance=relevance,
        triggered=triggered,
        triggered_context=build_triggered_context(triggered),
        story_context=memory.build_relevant_context(entity_ids),
    )
