import pytest
from fastapi.testclient import TestClient

import catalog_agent.app as app_module

from conftest import pending_of


@pytest.fixture
def client(monkeypatch, agent):
    monkeypatch.setattr(app_module, "agent", agent)
    return TestClient(app_module.app)


def test_chat_returns_envelope_with_session_id(client):
    response = client.post("/api/chat", json={"session_id": "s1", "message": "precio 100"})
    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "s1"
    assert body["mode"] == "execute"
    assert pending_of(body)["action"]["entity_id"] == 1000


def test_chat_mints_session_id(client):
    body = client.post("/api/chat", json={"message": "hola"}).json()
    assert len(body["session_id"]) == 32
    assert body["mode"] == "chat"


def test_ack_flow_over_http(client):
    body = client.post("/api/chat", json={"session_id": "s1", "message": "precio 100"}).json()
    nonce = pending_of(body)["nonce"]
    acked = client.post("/api/pending/ack", json={"session_id": "s1", "nonce": nonce}).json()
    assert acked["ok"] is True
    again = client.post("/api/pending/ack", json={"session_id": "s1", "nonce": nonce}).json()
    assert again["ok"] is False
    state = client.get("/api/state/s1").json()["session_state"]
    assert state["pending_action"] is None


def test_choice_and_reset_endpoints(client):
    client.post("/api/chat", json={"session_id": "s1", "message": "cambiá el precio del #5 a 4500"})
    client.post("/api/chat", json={"session_id": "s1", "message": "cambiá el stock del producto 999 a 4"})
    kept = client.post("/api/pending/choice", json={"session_id": "s1", "choice": "keep"}).json()
    assert kept["actions"][0]["entity_id"] == 5
    reset = client.post("/api/reset", json={"session_id": "s1"}).json()
    assert reset["session_state"]["pending_action"] is None


def test_missing_message_is_rejected(client):
    assert client.post("/api/chat", json={"session_id": "s1"}).status_code == 422
