"""Story memory domain models.

Every store operates on these types. Pydantic handles validation and
serialisation, so a `MemorySnapshot` dumped to JSON and loaded back compares
equal field for field.

Vocabularies (entity kinds, fact categories, severities, ...) are plain
string literals. Behaviour attached to a vocabulary lives in the lookup
tables next to it rather than on enum classes.

Importance is always kept in [0, 1] and relationship strength in [-1, 1].
Out-of-range values are clamped on construction and by every mutator.
"""

from __future__ import annotations

from functools import total_ordering
from typing import Any, Literal, NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EntityId = NewType("EntityId", UUID)
FactId = NewType("FactId", UUID)
RelationshipId = NewType("RelationshipId", UUID)
ConsequenceId = NewType("ConsequenceId", UUID)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

EntityKind = Literal[
    "npc",
    "location",
    "item",
    "quest",
    "organization",
    "event",
    "creature",
]

ENTITY_KIND_NAMES: dict[str, str] = {
    "npc": "NPC",
    "location": "Location",
    "item": "Item",
    "quest": "Quest",
    "organization": "Organization",
    "event": "Event",
    "creature": "Creature",
}

FactCategory = Literal[
    "appearance",
    "personality",
    "event",
    "relationship",
    "backstory",
    "motivation",
    "capability",
    "location",
    "possession",
    "status",
    "secret",
]

# Categories that rarely change once established
STABLE_CATEGORIES: frozenset[str] = frozenset(
    {"appearance", "personality", "backstory", "capability"}
)

FactSource = Literal[
    "dm_narration",
    "player_action",
    "npc_dialogue",
    "mechanics",
    "world_building",
]

RelationshipKind = Literal[
    # positive
    "family",
    "friend",
    "ally",
    "mentor",
    "student",
    "romantic",
    "employer",
    "employee",
    # neutral
    "acquaintance",
    "business",
    "fellow_member",
    # negative
    "rival",
    "enemy",
    "betrayer",
    "hunts",
    # places and things
    "lives_at",
    "works_at",
    "owns",
    "created",
    # organizations
    "leads",
    "member_of",
]

POSITIVE_KINDS: frozenset[str] = frozenset(
    {"family", "friend", "ally", "mentor", "student", "romantic"}
)
NEGATIVE_KINDS: frozenset[str] = frozenset({"rival", "enemy", "betrayer", "hunts"})

RELATIONSHIP_LABELS: dict[str, str] = {
    "family": "family of",
    "friend": "friend of",
    "ally": "ally of",
    "mentor": "mentor to",
    "student": "student of",
    "romantic": "romantic with",
    "employer": "employer of",
    "employee": "works for",
    "acquaintance": "acquainted with",
    "business": "does business with",
    "fellow_member": "fellow member with",
    "rival": "rival of",
    "enemy": "enemy of",
    "betrayer": "betrayed",
    "hunts": "hunting",
    "lives_at": "lives at",
    "works_at": "works at",
    "owns": "owns",
    "created": "created",
    "leads": "leads",
    "member_of": "member of",
}

_DIRECTED_INVERSES: dict[str, str] = {
    "mentor": "student",
    "student": "mentor",
    "employer": "employee",
    "employee": "employer",
    "leads": "member_of",
}

_SYMMETRIC_KINDS: frozenset[str] = frozenset({
    "family", "friend", "ally", "romantic", "acquaintance",
    "business", "fellow_member", "rival", "enemy",
})

Severity = Literal["minor", "moderate", "major", "critical"]

SEVERITY_IMPORTANCE: dict[str, float] = {
    "minor": 0.3,
    "moderate": 0.5,
    "major": 0.8,
    "critical": 1.0,
}

ConsequenceStatus = Literal["pending", "triggered", "resolved", "expired"]


def is_stable(category: FactCategory) -> bool:
    """True for categories that change slowly (appearance, personality, ...)."""
    return category in STABLE_CATEGORIES


def is_positive(kind: RelationshipKind) -> bool:
    return kind in POSITIVE_KINDS


def is_negative(kind: RelationshipKind) -> bool:
    return kind in NEGATIVE_KINDS


def inverse(kind: RelationshipKind) -> RelationshipKind | None:
    """Return the kind the counterpart holds towards the source, if any.

    mentor/student, employer/employee and leads/member_of map onto each
    other; friendships, rivalries and the like are their own inverse;
    ownership, residence and similar one-way ties have none.
    """
    if kind in _SYMMETRIC_KINDS:
        return kind
    return _DIRECTED_INVERSES.get(kind)  # type: ignore[return-value]


def describe_kind(kind: RelationshipKind) -> str:
    return RELATIONSHIP_LABELS.get(kind, kind.replace("_", " "))


def base_importance(severity: Severity) -> float:
    return SEVERITY_IMPORTANCE[severity]


# ---------------------------------------------------------------------------
# StoryMoment
# ---------------------------------------------------------------------------

@total_ordering
class StoryMoment(BaseModel, frozen=True):
    """A point on the turn clock."""

    turn: int = Field(default=0, ge=0)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, StoryMoment):
            return NotImplemented
        return self.turn < other.turn

    def is_recent(self, other: StoryMoment, within: int) -> bool:
        return abs(self.turn - other.turn) <= within


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------

ENTITY_TOUCH_BOOST = 0.2
ENTITY_MIN_IMPORTANCE = 0.1


class Entity(BaseModel):
    """Something the narrative keeps track of: an NPC, a place, an item, ..."""

    id: EntityId = Field(default_factory=uuid4)
    kind: EntityKind
    name: str
    aliases: list[str] = Field(default_factory=list)
    description: str | None = None
    first_seen: StoryMoment = Field(default_factory=StoryMoment)
    last_seen: StoryMoment = Field(default_factory=StoryMoment)
    importance: float = 1.0

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)

    def add_alias(self, alias: str) -> Entity:
        alias = alias.strip()
        known = {self.name.lower(), *(a.lower() for a in self.aliases)}
        if alias and alias.lower() not in known:
            self.aliases.append(alias)
        return self

    def names(self) -> list[str]:
        return [self.name, *self.aliases]

    def matches_name(self, query: str) -> bool:
        q = query.lower()
        return any(n.lower() == q for n in self.names())

    def matches_partial(self, query: str) -> bool:
        q = query.lower()
        return any(q in n.lower() for n in self.names())

    def touch(self, turn: int) -> None:
        self.last_seen = StoryMoment(turn=turn)
        self.importance = min(self.importance + ENTITY_TOUCH_BOOST, 1.0)

    def decay_importance(self, rate: float) -> None:
        self.importance = max(self.importance - rate, ENTITY_MIN_IMPORTANCE)


# ---------------------------------------------------------------------------
# StoryFact
# ---------------------------------------------------------------------------

FACT_MIN_IMPORTANCE = 0.1


class StoryFact(BaseModel):
    """An attributable statement about an entity, established at some turn.

    Facts are history: superseding one flips `is_current`, nothing is ever
    removed.
    """

    id: FactId = Field(default_factory=uuid4)
    subject: EntityId
    mentioned: list[EntityId] = Field(default_factory=list)
    content: str
    category: FactCategory
    established: StoryMoment = Field(default_factory=StoryMoment)
    is_current: bool = True
    importance: float = 1.0
    source: FactSource = "dm_narration"

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)

    def with_mentioned(self, entity_id: EntityId) -> StoryFact:
        if entity_id != self.subject and entity_id not in self.mentioned:
            self.mentioned.append(entity_id)
        return self

    def with_importance(self, importance: float) -> StoryFact:
        self.importance = _clamp(importance, 0.0, 1.0)
        return self

    @property
    def is_stable(self) -> bool:
        return is_stable(self.category)

    def involves(self, entity_id: EntityId) -> bool:
        return self.subject == entity_id or entity_id in self.mentioned

    def supersede(self) -> None:
        self.is_current = False

    def decay_importance(self, rate: float) -> None:
        self.importance = max(self.importance - rate, FACT_MIN_IMPORTANCE)


# ---------------------------------------------------------------------------
# Relationship
# ---------------------------------------------------------------------------

def default_strength(kind: RelationshipKind) -> float:
    if is_positive(kind):
        return 0.5
    if is_negative(kind):
        return -0.5
    return 0.0


class Relationship(BaseModel):
    """A typed edge from `source` to `target`. Negative strength is hostile.

    Saved documents name the endpoints `from` and `to`.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: RelationshipId = Field(default_factory=uuid4)
    source: EntityId = Field(alias="from")
    target: EntityId = Field(alias="to")
    kind: RelationshipKind
    description: str = ""
    strength: float = 0.0
    established: StoryMoment = Field(default_factory=StoryMoment)
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _strength_from_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and "strength" not in data and "kind" in data:
            data = {**data, "strength": default_strength(data["kind"])}
        return data

    @field_validator("strength")
    @classmethod
    def _clamp_strength(cls, value: float) -> float:
        return _clamp(value, -1.0, 1.0)

    @property
    def inverse_kind(self) -> RelationshipKind | None:
        return inverse(self.kind)

    def adjust_strength(self, delta: float) -> None:
        self.strength = _clamp(self.strength + delta, -1.0, 1.0)

    def end(self) -> None:
        self.is_active = False

    def involves(self, entity_id: EntityId) -> bool:
        return entity_id in (self.source, self.target)

    def other(self, entity_id: EntityId) -> EntityId | None:
        if entity_id == self.source:
            return self.target
        if entity_id == self.target:
            return self.source
        return None


# ---------------------------------------------------------------------------
# Consequence
# ---------------------------------------------------------------------------

class Consequence(BaseModel):
    """A deferred narrative effect waiting for its trigger condition.

    Lifecycle: pending -> triggered | resolved | expired. Only pending
    consequences are active; the other three states are terminal.
    """

    id: ConsequenceId = Field(default_factory=uuid4)
    trigger_description: str
    consequence_description: str
    severity: Severity
    subject: EntityId | None = None
    related: list[EntityId] = Field(default_factory=list)
    created: StoryMoment = Field(default_factory=StoryMoment)
    expires_turn: int | None = None
    status: ConsequenceStatus = "pending"
    importance: float = 0.5
    source_description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _importance_from_severity(cls, data: Any) -> Any:
        if isinstance(data, dict) and "importance" not in data:
            severity = data.get("severity")
            if severity in SEVERITY_IMPORTANCE:
                data = {**data, "importance": SEVERITY_IMPORTANCE[severity]}
        return data

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)

    @property
    def is_active(self) -> bool:
        return self.status == "pending"

    @property
    def min_importance(self) -> float:
        return base_importance(self.severity) * 0.5

    # Builder-style refinements, applied right after creation

    def with_subject(self, entity_id: EntityId) -> Consequence:
        self.subject = entity_id
        return self

    def with_related(self, entity_id: EntityId) -> Consequence:
        if entity_id not in self.related:
            self.related.append(entity_id)
        return self

    def with_expiry(self, expires_turn: int) -> Consequence:
        self.expires_turn = expires_turn
        return self

    def with_importance(self, importance: float) -> Consequence:
        self.importance = _clamp(importance, 0.0, 1.0)
        return self

    def with_source(self, description: str) -> Consequence:
        self.source_description = description
        return self

    # State transitions

    def trigger(self) -> bool:
        if not self.is_active:
            return False
        self.status = "triggered"
        return True

    def resolve(self) -> bool:
        if not self.is_active:
            return False
        self.status = "resolved"
        return True

    def check_expiry(self, current_turn: int) -> bool:
        """Expire a pending consequence once `current_turn` reaches its limit."""
        if (
            self.expires_turn is not None
            and current_turn >= self.expires_turn
            and self.status == "pending"
        ):
            self.status = "expired"
            return True
        return False

    def involves(self, entity_id: EntityId) -> bool:
        return self.subject == entity_id or entity_id in self.related

    def decay_importance(self, rate: float) -> None:
        # Plot hooks fade, but never below half their severity's weight
        self.importance = max(self.importance - rate, self.min_importance)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class MemorySnapshot(BaseModel):
    """Everything needed to rebuild a StoryMemory, as stored on disk."""

    current_turn: int = 0
    entities: list[Entity] = Field(default_factory=list)
    facts: list[StoryFact] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    consequences: list[Consequence] = Field(default_factory=list)
