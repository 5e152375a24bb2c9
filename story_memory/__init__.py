"""Story memory and consequence tracking for AI-narrated RPG campaigns."""

from .consequences import ConsequenceStore
from .entities import EntityIndex
from .facts import FactStore
from .llm import LLM, HttpLLM, LLMError, NullLLM
from .models import (
    Consequence,
    ConsequenceId,
    Entity,
    EntityId,
    FactId,
    MemorySnapshot,
    Relationship,
    RelationshipId,
    StoryFact,
    StoryMoment,
    inverse,
)
from .relationships import RelationshipGraph
from .relevance import RelevanceMatcher, RelevanceParseError, RelevanceResult, extract_json
from .store import DecayPolicy, StoryMemory
from .turn import TurnContext, begin_turn

__all__ = [
    "Consequence",
    "ConsequenceId",
    "ConsequenceStore",
    "DecayPolicy",
    "Entity",
    "EntityId",
    "EntityIndex",
    "FactId",
    "FactStore",
    "HttpLLM",
    "LLM",
    "LLMError",
    "MemorySnapshot",
    "NullLLM",
    "Relationship",
    "RelationshipGraph",
    "RelationshipId",
    "RelevanceMatcher",
    "RelevanceParseError",
    "RelevanceResult",
    "StoryFact",
    "StoryMemory",
    "StoryMoment",
    "TurnContext",
    "begin_turn",
    "extract_json",
    "inverse",
]
