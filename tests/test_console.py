"""Tests for the facilitator console against an in-process server."""

import random

import pytest
from fastapi.testclient import TestClient

import config
import facilitator_console
from engine.session import SessionHub
from store.memory import InMemoryDocumentStore

URL = "http://testserver"


@pytest.fixture
def client(monkeypatch):
    """Test client whose requests also serve the console's httpx calls."""
    from main import app
    old_hub = app.state.hub
    app.state.hub = SessionHub(InMemoryDocumentStore(), rng=random.Random(4))
    test_client = TestClient(app)
    sent = []

    def _request(method, url, **kwargs):
        kwargs.pop("timeout", None)
        sent.append((method, url, kwargs.get("json")))
        return test_client.request(method, url, **kwargs)

    monkeypatch.setattr(facilitator_console, "FACILITATOR_SECRET", config.FACILITATOR_SECRET)
    monkeypatch.setattr(facilitator_console.httpx, "request", _request)
    test_client.sent = sent
    yield test_client
    app.state.hub = old_hub


def _in_combat(client: TestClient) -> None:
    headers = {"X-Facilitator-Secret": config.FACILITATOR_SECRET}
    client.post("/session/combat/start", json={"participant_ids": ["a", "b"]}, headers=headers)
    client.post("/session/combat/initiative", json={"combatant_id": "a", "value": 15}, headers=headers)
    client.post("/session/combat/initiative", json={"combatant_id": "b", "value": 5}, headers=headers)
    client.post("/session/combat/confirm", headers=headers)


class TestAdvanceTurn:
    """Tests for the console's next command."""

    def test_sends_observed_turn(self, client):
        _in_combat(client)
        facilitator_console.advance_turn(URL)
        method, url, body = client.sent[-1]
        assert url.endswith("/session/combat/advance")
        assert body == {"expected": {"combat_round": 1, "current_turn_index": 0}}
        assert client.get("/session/combat").json()["current_combatant_id"] == "b"

    def test_replayed_request_does_not_advance_again(self, client):
        _in_combat(client)
        facilitator_console.advance_turn(URL)
        _, _, body = client.sent[-1]
        resp = client.post(
            "/session/combat/advance",
            json=body,
            headers={"X-Facilitator-Secret": config.FACILITATOR_SECRET},
        )
        assert resp.status_code == 409
        assert client.get("/session/combat").json()["turn"] == {"combat_round": 1, "current_turn_index": 1}

    def test_no_encounter_exits(self, client):
        with pytest.raises(SystemExit):
            facilitator_console.advance_turn(URL)
