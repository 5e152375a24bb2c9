import pytest

from story_memory import mcp_server
from story_memory.persistence import CampaignStorage
from story_memory.store import StoryMemory


class StubLLM:
    """Deterministic classifier stand-in for tests.

    Provide a dict mapping stage name → list of responses (in call order).
    Raises if a stage is called more times than responses were provided.
    """

    def __init__(self, responses: dict[str, list[str]]) -> None:
        self._queues: dict[str, list[str]] = {k: list(v) for k, v in responses.items()}
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        queue = self._queues.get(stage)
        if not queue:
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). calls so far: {self.calls}"
            )
        return queue.pop(0)

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed, so a skipped classifier call fails the test."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(
                f"StubLLM: unused responses remain: {leftover}"
            )


@pytest.fixture
def stub_llm():
    """The StubLLM class, so tests can queue their own replies."""
    return StubLLM


@pytest.fixture
def memory() -> StoryMemory:
    return StoryMemory()


@pytest.fixture
def storage(tmp_path) -> CampaignStorage:
    return CampaignStorage(tmp_path)


@pytest.fixture(autouse=True)
def fresh_mcp_memory(monkeypatch):
    """Give each test an empty MCP memory so tool calls don't bleed across tests."""
    monkeypatch.setattr(mcp_server, "_storage", None)
    mcp_server.set_memory(StoryMemory())
