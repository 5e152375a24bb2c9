"""Tests for the HTTP API, driven in-process through httpx's ASGI transport."""

import json
from uuid import uuid4

import httpx
import pytest

from story_memory.app import create_app
from story_memory.config import Settings


@pytest.fixture
def make_client(tmp_path):
    def _make(llm=None) -> httpx.AsyncClient:
        app = create_app(Settings(data_dir=tmp_path), llm=llm)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return _make


GUARDS = {
    "trigger_description": "Player enters Riverside Village",
    "consequence_description": "Town guards attempt to arrest the player",
    "severity": "major",
    "related_entities": ["Town Guards"],
}


class TestHealthAndStatus:
    async def test_health(self, make_client) -> None:
        async with make_client() as client:
            resp = await client.get("/api/health")
        assert resp.json() == {"status": "ok"}

    async def test_unknown_session_reads_404(self, make_client) -> None:
        async with make_client() as client:
            for path in ("status", "consequences", "snapshot"):
                resp = await client.get(f"/api/sessions/ghost/{path}")
                assert resp.status_code == 404
                assert resp.json()["detail"] == "Session not found"

    async def test_status_after_writes(self, make_client) -> None:
        async with make_client() as client:
            resp = await client.post("/api/sessions/run/facts", json={
                "subject_name": "Town Guards",
                "subject_type": "organization",
                "fact": "The guards answer to the baron",
                "category": "relationship",
            })
            assert resp.status_code == 201
            assert resp.json()["category"] == "relationship"
            resp = await client.post("/api/sessions/run/consequences", json=GUARDS)
            assert resp.status_code == 201
            status = (await client.get("/api/sessions/run/status")).json()
        assert status == {
            "current_turn": 0,
            "entities": 1,
            "facts": 1,
            "relationships": 0,
            "consequences": 1,
            "pending_consequences": 1,
        }


class TestWrites:
    async def test_invalid_body_rejected(self, make_client) -> None:
        async with make_client() as client:
            resp = await client.post(
                "/api/sessions/run/consequences",
                json={**GUARDS, "importance": 2.0},
            )
            assert resp.status_code == 422
            resp = await client.post(
                "/api/sessions/run/consequences",
                json={**GUARDS, "expires_in_turns": 0},
            )
            assert resp.status_code == 422

    async def test_writes_persist_to_disk(self, make_client, tmp_path) -> None:
        async with make_client() as client:
            await client.post("/api/sessions/My Run/consequences", json=GUARDS)
        doc = json.loads((tmp_path / "campaigns" / "my-run.json").read_text())
        assert doc["story_memory"]["consequences"][0]["severity"] == "major"

    async def test_resolve(self, make_client) -> None:
        async with make_client() as client:
            created = (await client.post("/api/sessions/run/consequences", json=GUARDS)).json()
            url = f"/api/sessions/run/consequences/{created['id']}/resolve"

            resp = await client.post(url)
            assert resp.status_code == 200
            assert resp.json()["status"] == "resolved"

            resp = await client.post(url)
            assert resp.status_code == 409
            assert resp.json()["detail"] == "Consequence is already resolved"

            resp = await client.post(f"/api/sessions/run/consequences/{uuid4()}/resolve")
            assert resp.status_code == 404
            assert resp.json()["detail"] == "Consequence not found"

    async def test_list_consequences_by_status(self, make_client) -> None:
        async with make_client() as client:
            first = (await client.post("/api/sessions/run/consequences", json=GUARDS)).json()
            await client.post("/api/sessions/run/consequences", json={**GUARDS, "severity": "minor"})
            await client.post(f"/api/sessions/run/consequences/{first['id']}/resolve")

            everything = (await client.get("/api/sessions/run/consequences")).json()
            pending = (await client.get("/api/sessions/run/consequences?status=pending")).json()
        assert len(everything) == 2
        assert [c["severity"] for c in pending] == ["minor"]


class TestTurns:
    async def test_turn_without_pending_consequences(self, make_client, stub_llm) -> None:
        llm = stub_llm({})
        async with make_client(llm) as client:
            resp = await client.post("/api/sessions/run/turns", json={"player_input": "I look around"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["turn"] == 1
        assert body["triggered"] == []
        assert body["prompt_context"] == ""
        assert llm.calls == []

    async def test_turn_triggers_consequence(self, make_client, stub_llm) -> None:
        async with make_client() as setup:
            await setup.post("/api/sessions/run/facts", json={
                "subject_name": "Riverside Village",
                "subject_type": "location",
                "fact": "Riverside Village sits on the baron's lands",
                "category": "location",
            })
            await setup.post("/api/sessions/run/facts", json={
                "subject_name": "Town Guards",
                "subject_type": "organization",
                "fact": "The guards answer to the baron",
                "category": "relationship",
            })
            created = (await setup.post("/api/sessions/run/consequences", json=GUARDS)).json()

        reply = json.dumps({
            "triggered_consequences": [created["id"]],
            "relevant_entities": ["Town Guards"],
            "explanation": "The player walks into the village",
        })
        llm = stub_llm({"relevance": [reply]})
        async with make_client(llm) as client:
            resp = await client.post("/api/sessions/run/turns", json={
                "player_input": "I walk into Riverside Village",
                "current_location": "River road",
            })
            body = resp.json()
            pending = (await client.get("/api/sessions/run/consequences?status=pending")).json()

        llm.assert_exhausted()
        assert body["turn"] == 1
        assert [c["id"] for c in body["triggered"]] == [created["id"]]
        assert body["explanation"] == "The player walks into the village"
        assert len(body["relevant_entities"]) == 1
        assert "### Riverside Village (Location)" in body["story_context"]
        assert "### Town Guards (Organization)" in body["story_context"]
        assert "TRIGGERED CONSEQUENCES" in body["triggered_context"]
        assert pending == []
        [(stage, prompt)] = llm.calls
        assert stage == "relevance"
        assert "River road" in prompt
