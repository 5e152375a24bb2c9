"""JSON file storage for campaign memory.

Each campaign is one flat JSON document under a configurable base directory.
There is no database; reads and writes go through pydantic's JSON helpers.

Directory layout:

    {base}/
      campaigns/
        {slug}.json     ← {slug, title, saved_at, story_memory: MemorySnapshot}
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from .models import MemorySnapshot
from .store import DecayPolicy, StoryMemory

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Cursed Tavern" → "the-cursed-tavern"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CampaignSave(BaseModel):
    slug: str
    title: str = ""
    saved_at: str = Field(default_factory=_now)
    story_memory: MemorySnapshot = Field(default_factory=MemorySnapshot)


class CampaignSummary(BaseModel):
    slug: str
    title: str
    saved_at: str
    current_turn: int


class CampaignStorage:
    def __init__(self, base_path: Path) -> None:
        self._root = base_path / "campaigns"
        self._root.mkdir(parents=True, exist_ok=True)

    def _file(self, slug: str) -> Path:
        return self._root / f"{slugify(slug)}.json"

    def exists(self, slug: str) -> bool:
        return self._file(slug).exists()

    def save(self, slug: str, memory: StoryMemory, title: str | None = None) -> CampaignSave:
        """Write the campaign document, keeping the stored title unless a new one is given."""
        slug = slugify(slug)
        if title is None:
            previous = self.load_document(slug)
            title = previous.title if previous is not None else slug
        doc = CampaignSave(slug=slug, title=title, story_memory=memory.snapshot())
        self._file(slug).write_text(doc.model_dump_json(indent=2, by_alias=True))
        logger.debug("saved campaign %s at turn %d", slug, memory.current_turn)
        return doc

    def load_document(self, slug: str) -> CampaignSave | None:
        path = self._file(slug)
        if not path.exists():
            return None
        return CampaignSave.model_validate_json(path.read_text())

    def load(self, slug: str, decay: DecayPolicy | None = None) -> StoryMemory | None:
        doc = self.load_document(slug)
        if doc is None:
            return None
        return StoryMemory.from_snapshot(doc.story_memory, decay)

    def list_campaigns(self) -> list[CampaignSummary]:
        summaries = []
        for path in sorted(self._root.glob("*.json")):
            doc = CampaignSave.model_validate_json(path.read_text())
            summaries.append(CampaignSummary(
                slug=doc.slug,
                title=doc.title,
                saved_at=doc.saved_at,
                current_turn=doc.story_memory.current_turn,
            ))
        return summaries

    def delete(self, slug: str) -> bool:
        path = self._file(slug)
        if not path.exists():
            return False
        path.unlink()
        return True
