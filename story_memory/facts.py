"""Fact store: an append-only log of statements about entities."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .models import (
    EntityId,
    FactCategory,
    FactId,
    FactSource,
    StoryFact,
    StoryMoment,
)


class FactStore:
    """Facts are never removed. Superseded facts stay as history."""

    def __init__(self, facts: list[StoryFact] | None = None) -> None:
        self._facts: list[StoryFact] = list(facts or [])

    def __len__(self) -> int:
        return len(self._facts)

    def __iter__(self) -> Iterator[StoryFact]:
        return iter(self._facts)

    def append(self, fact: StoryFact) -> FactId:
        self._facts.append(fact)
        return fact.id

    def add(
        self,
        subject: EntityId,
        content: str,
        category: FactCategory,
        source: FactSource,
        turn: int,
        *,
        mentioned: Iterable[EntityId] = (),
        importance: float = 1.0,
    ) -> StoryFact:
        fact = StoryFact(
            subject=subject,
            content=content,
            category=category,
            source=source,
            established=StoryMoment(turn=turn),
        ).with_importance(importance)
        for entity_id in mentioned:
            fact.with_mentioned(entity_id)
        self._facts.append(fact)
        return fact

    def get(self, fact_id: FactId) -> StoryFact | None:
        for fact in self._facts:
            if fact.id == fact_id:
                return fact
        return None

    def supersede(self, fact_id: FactId) -> bool:
        fact = self.get(fact_id)
        if fact is None:
            return False
        fact.supersede()
        return True

    def facts_for(self, entity_id: EntityId, *, current_only: bool = False) -> list[StoryFact]:
        return [
            f for f in self._facts
            if f.involves(entity_id) and (f.is_current or not current_only)
        ]

    def by_category(self, category: FactCategory, *, current_only: bool = True) -> list[StoryFact]:
        return [
            f for f in self._facts
            if f.category == category and (f.is_current or not current_only)
        ]

    def established_since(self, turn: int, *, current_only: bool = True) -> list[StoryFact]:
        return [
            f for f in self._facts
            if f.established.turn >= turn and (f.is_current or not current_only)
        ]

    def decay_all(self, rate: float, *, stable_rate: float | None = None) -> None:
        """Decay every fact. `stable_rate`, when given, applies to stable categories."""
        for fact in self._facts:
            if stable_rate is not None and fact.is_stable:
                fact.decay_importance(stable_rate)
            else:
                fact.decay_importance(rate)
