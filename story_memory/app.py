from pathlib import Path

from fastapi import FastAPI

from .config import Settings, build_classifier, load_settings
from .llm import LLM
from .persistence import CampaignStorage
from .relevance import RelevanceMatcher
from .routes import router
from .sessions import SessionRegistry


def create_app(settings: Settings | None = None, llm: LLM | None = None) -> FastAPI:
    """Build the API app. `llm` overrides the classifier chosen by settings."""
    settings = settings or load_settings()
    storage = CampaignStorage(Path(settings.data_dir))

    app = FastAPI(title="Story Memory")
    app.state.settings = settings
    app.state.sessions = SessionRegistry(storage, settings.decay)
    app.state.matcher = RelevanceMatcher(
        llm or build_classifier(settings), timeout=settings.classifier_timeout,
    )
    app.include_router(router, prefix="/api")
    return app
