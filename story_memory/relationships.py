"""Relationship graph: typed edges between entities.

Edges are directional as stored. `inverse()` says what the reciprocal edge
would be, but the graph never inserts it on its own; callers that want a
two-way tie add both edges.
"""

from __future__ import annotations

from collections.abc import Iterator

from .models import (
    EntityId,
    Relationship,
    RelationshipId,
    RelationshipKind,
    StoryMoment,
    inverse,
)

__all__ = ["RelationshipGraph", "inverse"]


class RelationshipGraph:
    def __init__(self, relationships: list[Relationship] | None = None) -> None:
        self._edges: list[Relationship] = list(relationships or [])

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[Relationship]:
        return iter(self._edges)

    def append(self, relationship: Relationship) -> RelationshipId:
        self._edges.append(relationship)
        return relationship.id

    def add(
        self,
        source: EntityId,
        target: EntityId,
        kind: RelationshipKind,
        turn: int,
        *,
        description: str = "",
        strength: float | None = None,
    ) -> Relationship:
        data: dict = {
            "source": source,
            "target": target,
            "kind": kind,
            "description": description,
            "established": StoryMoment(turn=turn),
        }
        if strength is not None:
            data["strength"] = strength
        relationship = Relationship.model_validate(data)
        self._edges.append(relationship)
        return relationship

    def get(self, relationship_id: RelationshipId) -> Relationship | None:
        for rel in self._edges:
            if rel.id == relationship_id:
                return rel
        return None

    def adjust_strength(self, relationship_id: RelationshipId, delta: float) -> Relationship | None:
        rel = self.get(relationship_id)
        if rel is not None:
            rel.adjust_strength(delta)
        return rel

    def end(self, relationship_id: RelationshipId) -> bool:
        rel = self.get(relationship_id)
        if rel is None:
            return False
        rel.end()
        return True

    def involving(self, entity_id: EntityId, *, active_only: bool = True) -> list[Relationship]:
        return [
            r for r in self._edges
            if r.involves(entity_id) and (r.is_active or not active_only)
        ]

    def between(self, source: EntityId, target: EntityId) -> Relationship | None:
        """The active edge from `source` to `target`, if there is one."""
        for rel in self._edges:
            if rel.source == source and rel.target == target and rel.is_active:
                return rel
        return None
