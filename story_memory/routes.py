"""FastAPI endpoints under /api.

Every session owns one StoryMemory. Writes go through the session registry,
which serialises work per session and saves the campaign afterwards. Reads
on unknown sessions answer 404; writes start the session on first use.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from .models import ConsequenceId
from .relevance import RelevanceMatcher
from .sessions import SessionRegistry
from .store import StoryMemory
from .turn import begin_turn

router = APIRouter()


# ── Request bodies ───────────────────────────────────────


class TurnBody(BaseModel):
    player_input: str
    current_location: str = ""


class FactBody(BaseModel):
    subject_name: str
    subject_type: str = "npc"
    fact: str
    category: str = "event"
    related_entities: list[str] = Field(default_factory=list)
    importance: float | None = Field(default=None, ge=0.0, le=1.0)


class ConsequenceBody(BaseModel):
    trigger_description: str
    consequence_description: str
    severity: str = "moderate"
    related_entities: list[str] = Field(default_factory=list)
    importance: float | None = Field(default=None, ge=0.0, le=1.0)
    expires_in_turns: int | None = Field(default=None, ge=1)


# ── Helpers ──────────────────────────────────────────────


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _matcher(request: Request) -> RelevanceMatcher:
    return request.app.state.matcher


def _require_session(registry: SessionRegistry, sid: str) -> None:
    if not registry.exists(sid):
        raise HTTPException(404, "Session not found")


def _status(memory: StoryMemory) -> dict:
    return {
        "current_turn": memory.current_turn,
        "entities": memory.entity_count(),
        "facts": memory.fact_count(),
        "relationships": memory.relationship_count(),
        "consequences": memory.consequence_count(),
        "pending_consequences": memory.pending_consequence_count(),
    }


# ── Endpoints ────────────────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/sessions/{sid}/status")
async def session_status(sid: str, request: Request):
    """Turn number and store sizes, for status displays."""
    registry = _registry(request)
    _require_session(registry, sid)
    async with registry.session(sid, save=False) as memory:
        return _status(memory)


@router.post("/sessions/{sid}/turns")
async def play_turn(sid: str, body: TurnBody, request: Request):
    """Advance the turn and return the context the narrator should see."""
    registry = _registry(request)
    async with registry.session(sid) as memory:
        ctx = await begin_turn(memory, _matcher(request), body.player_input, body.current_location)
        return {
            "turn": ctx.turn,
            "expired": [str(cid) for cid in ctx.expired],
            "triggered": [c.model_dump(mode="json") for c in ctx.triggered],
            "relevant_entities": [str(eid) for eid in ctx.relevance.relevant_entities],
            "explanation": ctx.relevance.explanation,
            "triggered_context": ctx.triggered_context,
            "story_context": ctx.story_context,
            "prompt_context": ctx.prompt_context,
        }


@router.post("/sessions/{sid}/facts", status_code=201)
async def add_fact(sid: str, body: FactBody, request: Request):
    """Record a fact about a named entity."""
    async with _registry(request).session(sid) as memory:
        fact = memory.remember_fact(
            body.subject_name,
            body.subject_type,
            body.fact,
            body.category,
            body.related_entities,
            body.importance,
        )
        return fact.model_dump(mode="json")


@router.post("/sessions/{sid}/consequences", status_code=201)
async def add_consequence(sid: str, body: ConsequenceBody, request: Request):
    """Register a deferred consequence."""
    async with _registry(request).session(sid) as memory:
        consequence = memory.register_consequence(
            body.trigger_description,
            body.consequence_description,
            body.severity,
            body.related_entities,
            body.importance,
            body.expires_in_turns,
        )
        return consequence.model_dump(mode="json")


@router.get("/sessions/{sid}/consequences")
async def list_consequences(sid: str, request: Request, status: str | None = None):
    """All consequences, or only those in `status` (pending, triggered, ...)."""
    registry = _registry(request)
    _require_session(registry, sid)
    async with registry.session(sid, save=False) as memory:
        return [
            c.model_dump(mode="json")
            for c in memory.consequences
            if status is None or c.status == status
        ]


@router.post("/sessions/{sid}/consequences/{cid}/resolve")
async def resolve_consequence(sid: str, cid: UUID, request: Request):
    """Mark a pending consequence as handled outside the relevance matcher."""
    registry = _registry(request)
    _require_session(registry, sid)
    async with registry.session(sid) as memory:
        consequence = memory.get_consequence(ConsequenceId(cid))
        if consequence is None:
            raise HTTPException(404, "Consequence not found")
        if not memory.resolve_consequence(consequence.id):
            raise HTTPException(409, f"Consequence is already {consequence.status}")
        return consequence.model_dump(mode="json")


@router.get("/sessions/{sid}/snapshot")
async def session_snapshot(sid: str, request: Request):
    """The full persisted shape of the session's memory."""
    registry = _registry(request)
    _require_session(registry, sid)
    async with registry.session(sid, save=False) as memory:
        return memory.snapshot().model_dump(mode="json", by_alias=True)
