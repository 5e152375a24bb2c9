"""StoryMemory: the aggregate that owns every store and the turn clock.

All recording goes through StoryMemory so new items are stamped with the
current turn. Reads hand back the stored objects; callers that mutate them
directly bypass clamping only if they assign fields by hand.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, get_args

from pydantic import BaseModel, Field

from .consequences import ConsequenceStore
from .entities import EntityIndex
from .facts import FactStore
from .models import (
    ENTITY_KIND_NAMES,
    SEVERITY_IMPORTANCE,
    Consequence,
    ConsequenceId,
    Entity,
    EntityId,
    EntityKind,
    FactCategory,
    FactId,
    FactSource,
    MemorySnapshot,
    Relationship,
    RelationshipId,
    RelationshipKind,
    Severity,
    StoryFact,
    describe_kind,
)
from .relationships import RelationshipGraph

if TYPE_CHECKING:
    from .relevance import RelevanceResult

logger = logging.getLogger(__name__)

MAX_CONTEXT_CONSEQUENCES = 20
MAX_CONTEXT_FACTS = 30
RECENT_FACT_WINDOW = 10
RECENT_FACT_BONUS = 0.3
RELATIONSHIPS_PER_ENTITY = 3
DEFAULT_FACT_IMPORTANCE = 0.7

_ENTITY_KINDS: tuple[str, ...] = get_args(EntityKind)
_FACT_CATEGORIES: tuple[str, ...] = get_args(FactCategory)


class DecayPolicy(BaseModel):
    """How much importance fades, and how often.

    Decay is applied on turns divisible by `every_n_turns`. Expiry is not
    part of the policy; it is checked on every advance.
    """

    entity_rate: float = Field(default=0.02, ge=0.0)
    fact_rate: float = Field(default=0.02, ge=0.0)
    stable_fact_rate: float = Field(default=0.01, ge=0.0)
    consequence_rate: float = Field(default=0.01, ge=0.0)
    every_n_turns: int = Field(default=1, ge=1)

    def applies_on(self, turn: int) -> bool:
        return turn % self.every_n_turns == 0


def contains_word(text: str, word: str) -> bool:
    """True when `word` occurs in `text` bounded by non-alphanumerics or the ends."""
    if not word:
        return False
    pattern = r"(?<![A-Za-z0-9])" + re.escape(word) + r"(?![A-Za-z0-9])"
    return re.search(pattern, text) is not None


def parse_entity_kind(value: str) -> EntityKind:
    value = value.strip().lower()
    return value if value in _ENTITY_KINDS else "npc"  # type: ignore[return-value]


def parse_fact_category(value: str) -> FactCategory:
    value = value.strip().lower()
    return value if value in _FACT_CATEGORIES else "event"  # type: ignore[return-value]


def parse_severity(value: str) -> Severity:
    value = value.strip().lower()
    return value if value in SEVERITY_IMPORTANCE else "moderate"  # type: ignore[return-value]


class StoryMemory:
    def __init__(self, decay: DecayPolicy | None = None) -> None:
        self.current_turn = 0
        self.decay = decay or DecayPolicy()
        self.entities = EntityIndex()
        self.facts = FactStore()
        self.relationships = RelationshipGraph()
        self.consequences = ConsequenceStore()

    # ------------------------------------------------------------------
    # Turn clock
    # ------------------------------------------------------------------

    def advance_turn(self) -> list[ConsequenceId]:
        """Move to the next turn, expire due consequences, then decay.

        Returns the ids of consequences that expired on this advance.
        """
        self.current_turn += 1
        expired = self.consequences.expire_due(self.current_turn)
        if self.decay.applies_on(self.current_turn):
            self.entities.decay_all(self.decay.entity_rate)
            self.facts.decay_all(self.decay.fact_rate, stable_rate=self.decay.stable_fact_rate)
            self.consequences.decay_all(self.decay.consequence_rate)
        logger.debug(
            "turn advanced to %d (%d expired, %d pending)",
            self.current_turn, len(expired), self.pending_consequence_count(),
        )
        return expired

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def create_entity(self, kind: EntityKind, name: str) -> Entity:
        return self.entities.create(kind, name, self.current_turn)

    def add_entity(self, entity: Entity) -> EntityId:
        return self.entities.add(entity)

    def get_or_create_entity(self, kind: EntityKind, name: str) -> EntityId:
        """Exact name/alias match touches and returns the existing entity."""
        existing = self.entities.find_by_name(name)
        if existing is not None:
            existing.touch(self.current_turn)
            return existing.id
        return self.create_entity(kind, name).id

    def touch_entity(self, entity_id: EntityId) -> bool:
        return self.entities.touch(entity_id, self.current_turn)

    def add_alias(self, entity_id: EntityId, alias: str) -> bool:
        return self.entities.add_alias(entity_id, alias)

    def get_entity(self, entity_id: EntityId) -> Entity | None:
        return self.entities.get(entity_id)

    def find_entity_by_name(self, name: str) -> Entity | None:
        return self.entities.find_by_name(name)

    def find_entity_id(self, query: str) -> EntityId | None:
        return self.entities.find_id(query)

    def find_entities_partial(self, query: str) -> list[Entity]:
        return self.entities.find_partial(query)

    def entities_of_kind(self, kind: EntityKind) -> list[Entity]:
        return self.entities.of_kind(kind)

    def entities_by_importance(self) -> list[Entity]:
        return self.entities.by_importance()

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    def add_fact(
        self,
        subject: EntityId,
        content: str,
        category: FactCategory,
        source: FactSource = "dm_narration",
        *,
        mentioned: Iterable[EntityId] = (),
        importance: float = 1.0,
    ) -> StoryFact:
        """Record a fact and touch every entity it involves."""
        fact = self.facts.add(
            subject, content, category, source, self.current_turn,
            mentioned=mentioned, importance=importance,
        )
        self.touch_entity(fact.subject)
        for entity_id in fact.mentioned:
            self.touch_entity(entity_id)
        return fact

    def supersede_fact(self, fact_id: FactId) -> bool:
        return self.facts.supersede(fact_id)

    def facts_about(self, entity_id: EntityId, *, current_only: bool = False) -> list[StoryFact]:
        return self.facts.facts_for(entity_id, current_only=current_only)

    def facts_by_category(self, category: FactCategory) -> list[StoryFact]:
        return self.facts.by_category(category)

    def recent_facts(self, within_turns: int) -> list[StoryFact]:
        return self.facts.established_since(max(self.current_turn - within_turns, 0))

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def add_relationship(
        self,
        source: EntityId,
        target: EntityId,
        kind: RelationshipKind,
        *,
        description: str = "",
        strength: float | None = None,
    ) -> Relationship:
        return self.relationships.add(
            source, target, kind, self.current_turn,
            description=description, strength=strength,
        )

    def adjust_relationship(self, relationship_id: RelationshipId, delta: float) -> Relationship | None:
        return self.relationships.adjust_strength(relationship_id, delta)

    def end_relationship(self, relationship_id: RelationshipId) -> bool:
        return self.relationships.end(relationship_id)

    def relationships_of(self, entity_id: EntityId) -> list[Relationship]:
        return self.relationships.involving(entity_id)

    def find_relationship(self, source: EntityId, target: EntityId) -> Relationship | None:
        return self.relationships.between(source, target)

    # ------------------------------------------------------------------
    # Consequences
    # ------------------------------------------------------------------

    def create_consequence(
        self,
        trigger_description: str,
        consequence_description: str,
        severity: Severity,
    ) -> Consequence:
        return self.consequences.create(
            trigger_description, consequence_description, severity, self.current_turn,
        )

    def add_consequence(self, consequence: Consequence) -> ConsequenceId:
        return self.consequences.add(consequence)

    def get_consequence(self, consequence_id: ConsequenceId) -> Consequence | None:
        return self.consequences.get(consequence_id)

    def trigger_consequence(self, consequence_id: ConsequenceId) -> bool:
        return self.consequences.trigger(consequence_id)

    def resolve_consequence(self, consequence_id: ConsequenceId) -> bool:
        return self.consequences.resolve(consequence_id)

    def pending_consequences(self) -> list[Consequence]:
        return self.consequences.pending()

    def pending_consequences_by_importance(self) -> list[Consequence]:
        return self.consequences.pending_by_importance()

    def consequences_involving(self, entity_id: EntityId) -> list[Consequence]:
        return self.consequences.involving(entity_id)

    def apply_relevance(self, result: RelevanceResult) -> list[Consequence]:
        """Trigger every consequence the matcher selected.

        Returns the consequences that actually moved to `triggered`; ones that
        left pending in the meantime are skipped.
        """
        fired: list[Consequence] = []
        for consequence_id in result.triggered_consequences:
            consequence = self.get_consequence(consequence_id)
            if consequence is not None and consequence.trigger():
                fired.append(consequence)
        if fired:
            logger.info("%d consequence(s) triggered at turn %d", len(fired), self.current_turn)
        return fired

    # ------------------------------------------------------------------
    # Name-based recording
    # ------------------------------------------------------------------

    def _resolve_names(self, names: Iterable[str]) -> list[EntityId]:
        resolved: list[EntityId] = []
        for name in names:
            entity = self.entities.find_by_name(name)
            if entity is None:
                logger.debug("dropping unknown entity reference %r", name)
            elif entity.id not in resolved:
                resolved.append(entity.id)
        return resolved

    def remember_fact(
        self,
        subject_name: str,
        subject_type: str,
        fact: str,
        category: str,
        related_entities: Iterable[str] = (),
        importance: float | None = None,
    ) -> StoryFact:
        """Record a fact described by names rather than ids."""
        subject = self.get_or_create_entity(parse_entity_kind(subject_type), subject_name)
        mentioned = [e for e in self._resolve_names(related_entities) if e != subject]
        return self.add_fact(
            subject,
            fact,
            parse_fact_category(category),
            mentioned=mentioned,
            importance=DEFAULT_FACT_IMPORTANCE if importance is None else importance,
        )

    def register_consequence(
        self,
        trigger_description: str,
        consequence_description: str,
        severity: str,
        related_entities: Iterable[str] = (),
        importance: float | None = None,
        expires_in_turns: int | None = None,
    ) -> Consequence:
        """Register a consequence described by names rather than ids.

        The first related entity that resolves becomes the subject, the rest
        are attached as related.
        """
        consequence = self.create_consequence(
            trigger_description, consequence_description, parse_severity(severity),
        )
        for index, entity_id in enumerate(self._resolve_names(related_entities)):
            if index == 0:
                consequence.with_subject(entity_id)
            else:
                consequence.with_related(entity_id)
        if importance is not None:
            consequence.with_importance(importance)
        if expires_in_turns is not None:
            consequence.with_expiry(self.current_turn + expires_in_turns)
        return consequence

    # ------------------------------------------------------------------
    # Prompt context
    # ------------------------------------------------------------------

    def build_consequences_for_relevance(self) -> str:
        lines = [
            f"{n}. [{c.id}] ({c.severity.capitalize()}) "
            f"TRIGGER: {c.trigger_description} -> EFFECT: {c.consequence_description}"
            for n, c in enumerate(
                self.pending_consequences_by_importance()[:MAX_CONTEXT_CONSEQUENCES], start=1
            )
        ]
        return "\n".join(lines)

    def extract_mentioned_entities(self, text: str) -> list[EntityId]:
        """Entities whose name or alias appears in `text` as a whole word."""
        text = text.lower()
        found: list[EntityId] = []
        for name, entity_id in self.entities.name_index().items():
            if entity_id not in found and contains_word(text, name):
                found.append(entity_id)
        return found

    def build_context_for_input(self, text: str) -> str:
        return self.build_relevant_context(self.extract_mentioned_entities(text))

    def _rank_facts(self, entity_ids: Iterable[EntityId]) -> list[StoryFact]:
        ids = set(entity_ids)
        scored: list[tuple[float, StoryFact]] = []
        for fact in self.facts:
            if not fact.is_current:
                continue
            if fact.subject not in ids and not ids.intersection(fact.mentioned):
                continue
            bonus = (
                RECENT_FACT_BONUS
                if fact.established.turn + RECENT_FACT_WINDOW >= self.current_turn
                else 0.0
            )
            scored.append((fact.importance + bonus, fact))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [fact for _, fact in scored[:MAX_CONTEXT_FACTS]]

    def build_relevant_context(self, entity_ids: Iterable[EntityId]) -> str:
        """Markdown block of what the story knows about the given entities."""
        top = self._rank_facts(entity_ids)
        if not top:
            return ""

        by_subject: dict[EntityId, list[StoryFact]] = {}
        for fact in top:
            by_subject.setdefault(fact.subject, []).append(fact)

        parts = ["## Relevant Story Context\n"]
        for subject, facts in by_subject.items():
            entity = self.entities.get(subject)
            if entity is None:
                continue
            lines = [f"### {entity.name} ({ENTITY_KIND_NAMES[entity.kind]})"]
            lines += [f"- {fact.content}" for fact in facts]
            for rel in self.relationships_of(subject)[:RELATIONSHIPS_PER_ENTITY]:
                other = self.entities.get(rel.other(subject) or subject)
                if other is None:
                    continue
                line = f"- {describe_kind(rel.kind)} {other.name}"
                if rel.description:
                    line += f" ({rel.description})"
                lines.append(line)
            parts.append("\n".join(lines) + "\n")
        return "\n".join(parts)

    def build_summary(self) -> str:
        """Key NPCs, notable locations, active quests and recent events."""
        sections: list[str] = []

        def entity_section(title: str, entities: list[Entity]) -> None:
            if not entities:
                return
            lines = [f"### {title}"]
            for entity in entities:
                line = f"- **{entity.name}**"
                if entity.description:
                    line += f": {entity.description}"
                lines.append(line)
            sections.append("\n".join(lines) + "\n")

        entity_section("Key NPCs", self.entities_of_kind("npc")[:5])
        entity_section("Notable Locations", self.entities_of_kind("location")[:3])
        entity_section(
            "Active Quests",
            [q for q in self.entities_of_kind("quest") if q.importance > 0.3],
        )

        events = [f for f in self.recent_facts(5) if f.category == "event"][:5]
        if events:
            sections.append(
                "\n".join(["### Recent Events", *(f"- {f.content}" for f in events)]) + "\n"
            )
        return "\n".join(sections)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def entity_count(self) -> int:
        return len(self.entities)

    def fact_count(self) -> int:
        return len(self.facts)

    def relationship_count(self) -> int:
        return len(self.relationships)

    def consequence_count(self) -> int:
        return len(self.consequences)

    def pending_consequence_count(self) -> int:
        return len(self.consequences.pending())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> MemorySnapshot:
        return MemorySnapshot(
            current_turn=self.current_turn,
            entities=[e.model_copy(deep=True) for e in self.entities],
            facts=[f.model_copy(deep=True) for f in self.facts],
            relationships=[r.model_copy(deep=True) for r in self.relationships],
            consequences=[c.model_copy(deep=True) for c in self.consequences],
        )

    @classmethod
    def from_snapshot(
        cls, snapshot: MemorySnapshot, decay: DecayPolicy | None = None,
    ) -> StoryMemory:
        memory = cls(decay)
        memory.current_turn = snapshot.current_turn
        memory.entities = EntityIndex([e.model_copy(deep=True) for e in snapshot.entities])
        memory.facts = FactStore([f.model_copy(deep=True) for f in snapshot.facts])
        memory.relationships = RelationshipGraph(
            [r.model_copy(deep=True) for r in snapshot.relationships]
        )
        memory.consequences = ConsequenceStore(
            [c.model_copy(deep=True) for c in snapshot.consequences]
        )
        return memory

    def to_json(self) -> str:
        return self.snapshot().model_dump_json(indent=2, by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes, decay: DecayPolicy | None = None) -> StoryMemory:
        return cls.from_snapshot(MemorySnapshot.model_validate_json(data), decay)
