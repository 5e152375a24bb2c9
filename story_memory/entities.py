"""Entity index: identity and naming for everything the story tracks.

Entities are kept in insertion order. Exact name lookups go through a
lowercase name/alias index where the first entity to claim a name keeps it;
fuzzy lookups scan in insertion order, so an ambiguous query resolves to the
entity that was created first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from .models import Entity, EntityId, EntityKind, StoryMoment

logger = logging.getLogger(__name__)


class EntityIndex:
    def __init__(self, entities: list[Entity] | None = None) -> None:
        self._entities: dict[EntityId, Entity] = {}
        self._names: dict[str, EntityId] = {}
        for entity in entities or []:
            self.add(entity)

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities.values())

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _index_name(self, name: str, entity_id: EntityId) -> None:
        key = name.strip().lower()
        if key:
            self._names.setdefault(key, entity_id)

    def add(self, entity: Entity) -> EntityId:
        """Store an entity as-is. No deduplication by name."""
        self._entities[entity.id] = entity
        for name in entity.names():
            self._index_name(name, entity.id)
        return entity.id

    def create(self, kind: EntityKind, name: str, turn: int) -> Entity:
        moment = StoryMoment(turn=turn)
        entity = Entity(kind=kind, name=name, first_seen=moment, last_seen=moment)
        self.add(entity)
        logger.debug("entity created kind=%s name=%r turn=%d", kind, name, turn)
        return entity

    def add_alias(self, entity_id: EntityId, alias: str) -> bool:
        entity = self._entities.get(entity_id)
        if entity is None:
            return False
        entity.add_alias(alias)
        self._index_name(alias, entity_id)
        return True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, entity_id: EntityId) -> Entity | None:
        return self._entities.get(entity_id)

    def find_by_name(self, query: str) -> Entity | None:
        """Case-insensitive exact match against names and aliases."""
        entity_id = self._names.get(query.strip().lower())
        return self._entities.get(entity_id) if entity_id is not None else None

    def find_id(self, query: str) -> EntityId | None:
        """Resolve free text to an entity id.

        An exact name or alias wins; otherwise the first entity whose name or
        alias contains the query (case-insensitive). Blank queries never match.
        """
        query = query.strip()
        if not query:
            return None
        exact = self.find_by_name(query)
        if exact is not None:
            return exact.id
        for entity in self._entities.values():
            if entity.matches_partial(query):
                return entity.id
        return None

    def find_partial(self, query: str) -> list[Entity]:
        query = query.strip()
        if not query:
            return []
        return [e for e in self._entities.values() if e.matches_partial(query)]

    def of_kind(self, kind: EntityKind) -> list[Entity]:
        return [e for e in self._entities.values() if e.kind == kind]

    def by_importance(self) -> list[Entity]:
        return sorted(self._entities.values(), key=lambda e: e.importance, reverse=True)

    def name_index(self) -> dict[str, EntityId]:
        """Lowercase name/alias -> entity id, for mention scanning."""
        return dict(self._names)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def touch(self, entity_id: EntityId, turn: int) -> bool:
        entity = self._entities.get(entity_id)
        if entity is None:
            return False
        entity.touch(turn)
        return True

    def decay_all(self, rate: float) -> None:
        for entity in self._entities.values():
            entity.decay_importance(rate)
