"""Consequence store: deferred narrative effects and their lifecycle.

A consequence is created pending and leaves that state exactly once:

    pending --(matcher verdict)--> triggered
    pending --(handled otherwise)--> resolved
    pending --(current_turn >= expires_turn)--> expired

Every transition out of a terminal state is a no-op, so a consequence can
never fire twice. Nothing is deleted; terminal consequences are history.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from .models import Consequence, ConsequenceId, EntityId, Severity, StoryMoment

logger = logging.getLogger(__name__)


class ConsequenceStore:
    def __init__(self, consequences: list[Consequence] | None = None) -> None:
        self._items: list[Consequence] = list(consequences or [])

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Consequence]:
        return iter(self._items)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def add(self, consequence: Consequence) -> ConsequenceId:
        self._items.append(consequence)
        return consequence.id

    def create(
        self,
        trigger_description: str,
        consequence_description: str,
        severity: Severity,
        turn: int,
    ) -> Consequence:
        """Create and store a pending consequence weighted by its severity.

        The returned object is the stored one, so `with_subject()`,
        `with_expiry()` and friends refine it in place.
        """
        consequence = Consequence(
            trigger_description=trigger_description,
            consequence_description=consequence_description,
            severity=severity,
            created=StoryMoment(turn=turn),
        )
        self._items.append(consequence)
        return consequence

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, consequence_id: ConsequenceId) -> Consequence | None:
        for consequence in self._items:
            if consequence.id == consequence_id:
                return consequence
        return None

    def pending(self) -> list[Consequence]:
        return [c for c in self._items if c.is_active]

    def pending_by_importance(self) -> list[Consequence]:
        """Pending consequences, most important first; ties keep insertion order."""
        return sorted(self.pending(), key=lambda c: c.importance, reverse=True)

    def involving(self, entity_id: EntityId) -> list[Consequence]:
        return [c for c in self._items if c.is_active and c.involves(entity_id)]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def trigger(self, consequence_id: ConsequenceId) -> bool:
        consequence = self.get(consequence_id)
        if consequence is None:
            return False
        return consequence.trigger()

    def resolve(self, consequence_id: ConsequenceId) -> bool:
        consequence = self.get(consequence_id)
        if consequence is None:
            return False
        return consequence.resolve()

    def check_expiry(self, consequence_id: ConsequenceId, current_turn: int) -> bool:
        consequence = self.get(consequence_id)
        if consequence is None:
            return False
        return consequence.check_expiry(current_turn)

    def expire_due(self, current_turn: int) -> list[ConsequenceId]:
        """Run the expiry check over every pending consequence."""
        expired = [c.id for c in self.pending() if c.check_expiry(current_turn)]
        if expired:
            logger.info("%d consequence(s) expired at turn %d", len(expired), current_turn)
        return expired

    def decay_all(self, rate: float) -> None:
        # Terminal consequences keep the importance they had when they left pending
        for consequence in self._items:
            if consequence.is_active:
                consequence.decay_importance(rate)
