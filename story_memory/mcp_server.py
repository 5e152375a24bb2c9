"""FastMCP server exposing story memory recording as MCP tools.

Tools:
  - remember_fact(...)            — record a fact about a named entity
  - register_consequence(...)     — register a deferred consequence
  - lookup_entity(name)           — what the story knows about an entity
  - list_pending_consequences()   — consequences still waiting to trigger

The active StoryMemory is module state replaced via set_memory() for tests.
When run through main.py it is loaded from a campaign save and written back
after every recording tool call.

Usage:
    python main.py mcp --campaign my-campaign
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from .persistence import CampaignStorage
from .store import StoryMemory, parse_severity

logger = logging.getLogger(__name__)

mcp = FastMCP("story-memory")

_memory: StoryMemory = StoryMemory()
_storage: CampaignStorage | None = None
_campaign: str = ""


def set_memory(memory: StoryMemory) -> None:
    """Replace the active memory (used in tests)."""
    global _memory
    _memory = memory


def get_memory() -> StoryMemory:
    """Return the active memory (used in tests to inspect stored state)."""
    return _memory


def attach_campaign(storage: CampaignStorage, slug: str) -> None:
    """Load `slug` as the active memory and save it after each recording call."""
    global _storage, _campaign
    _storage, _campaign = storage, slug
    set_memory(storage.load(slug) or StoryMemory())


def _save() -> None:
    if _storage is not None:
        _storage.save(_campaign, _memory)


@mcp.tool()
def remember_fact(
    subject_name: str,
    subject_type: str,
    fact: str,
    category: str,
    related_entities: list[str] | None = None,
    importance: float | None = None,
) -> dict:
    """Record an important story fact for future reference.

    Use this when introducing NPCs, establishing locations, recording player
    decisions, or revealing plot points. subject_type is one of npc,
    location, item, quest, organization, event, creature. category is one of
    appearance, personality, event, relationship, backstory, motivation,
    capability, location, possession, status, secret. importance ranges from
    0.1 to 1.0 (default 0.7).
    """
    related = related_entities or []
    stored = _memory.remember_fact(
        subject_name, subject_type, fact, category, related, importance,
    )
    _save()
    related_note = f" (related: {', '.join(related)})" if related else ""
    return {
        "message": f"Noted: {subject_name} ({subject_type}) - {fact}{related_note}",
        "fact_id": str(stored.id),
        "subject_id": str(stored.subject),
    }


@mcp.tool()
def register_consequence(
    trigger_description: str,
    consequence_description: str,
    severity: str,
    related_entities: list[str] | None = None,
    importance: float | None = None,
    expires_in_turns: int | None = None,
) -> dict:
    """Register a future consequence based on player actions.

    Use this when something the player does should have future
    ramifications, like making an enemy, breaking a law, or triggering a
    curse. severity is one of minor, moderate, major, critical. Omit
    expires_in_turns for permanent consequences.
    """
    if expires_in_turns is not None and expires_in_turns < 1:
        logger.warning("ignoring expires_in_turns=%d, must be at least 1", expires_in_turns)
        expires_in_turns = None
    consequence = _memory.register_consequence(
        trigger_description,
        consequence_description,
        severity,
        related_entities or [],
        importance,
        expires_in_turns,
    )
    _save()
    expiry_note = f" (expires in {expires_in_turns} turns)" if expires_in_turns else ""
    return {
        "message": (
            f"Consequence registered: If {trigger_description}, then "
            f"{consequence_description} ({parse_severity(severity)} severity, "
            f"importance {consequence.importance:.1f}){expiry_note}"
        ),
        "consequence_id": str(consequence.id),
    }


@mcp.tool()
def lookup_entity(name: str) -> dict:
    """Look up an entity by name and return what the story knows about it."""
    entity_id = _memory.find_entity_id(name)
    entity = _memory.get_entity(entity_id) if entity_id is not None else None
    if entity is None:
        return {"found": False, "name": name}
    return {
        "found": True,
        "id": str(entity.id),
        "name": entity.name,
        "kind": entity.kind,
        "aliases": entity.aliases,
        "description": entity.description,
        "importance": entity.importance,
        "facts": [f.content for f in _memory.facts_about(entity.id, current_only=True)],
    }


@mcp.tool()
def list_pending_consequences() -> dict:
    """List consequences that have not triggered, resolved or expired yet."""
    return {
        "current_turn": _memory.current_turn,
        "pending": [
            {
                "id": str(c.id),
                "trigger": c.trigger_description,
                "effect": c.consequence_description,
                "severity": c.severity,
                "importance": c.importance,
                "expires_turn": c.expires_turn,
            }
            for c in _memory.pending_consequences_by_importance()
        ],
    }
