import os

import pytest
from fastapi.testclient import TestClient

os.environ["SESSION_BACKEND"] = "memory"
os.environ["DEMO_MODE"] = "true"

from services.decision_server.app.main import app

# demo directory: ORD-1004 is delivered, CUST-1002 is a REGULAR member under the risk threshold
CUSTOMER_ID = "CUST-1002"
ORDER_ID = "ORD-1004"


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def start(client: TestClient) -> str:
    response = client.post("/api/conversation/start", json={"customer_id": CUSTOMER_ID, "order_ids": [ORDER_ID]})
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_start_returns_session_and_welcome(client: TestClient):
    response = client.post("/api/conversation/start", json={"customer_id": CUSTOMER_ID, "order_ids": [ORDER_ID]})
    assert response.status_code == 200
    payload = response.json()
    assert payload["session_id"].startswith("SES-")
    assert "support assistant" in payload["message"]


def test_start_requires_customer_id(client: TestClient):
    response = client.post("/api/conversation/start", json={"customer_id": "", "order_ids": []})
    assert response.status_code == 422


def test_wrong_order_message_flow(client: TestClient):
    session_id = start(client)
    response = client.post(
        "/api/conversation/message",
        json={"session_id": session_id, "message": "I got the wrong order"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert "redelivery" in payload["response"]
    assert payload["escalated"] is False

    view = client.post("/api/conversation/session", json={"session_id": session_id})
    assert view.status_code == 200
    body = view.json()
    assert [m["role"] for m in body["messages"]] == ["assistant", "user", "assistant"]
    assert body["resolutions"][0]["type"] == "REDELIVERY"
    assert body["status"] == "active"


def test_empty_message_is_rejected(client: TestClient):
    session_id = start(client)
    response = client.post("/api/conversation/message", json={"session_id": session_id, "message": ""})
    assert response.status_code == 422


def test_message_for_unknown_session(client: TestClient):
    response = client.post("/api/conversation/message", json={"session_id": "SES-nope", "message": "hello"})
    assert response.status_code == 404
    assert response.json()["detail"] == "session_not_found"


def test_escalate(client: TestClient):
    session_id = start(client)
    r1 = client.post("/api/conversation/escalate", json={"session_id": session_id})
    r2 = client.post("/api/conversation/escalate", json={"session_id": session_id})
    assert r1.status_code == 200
    assert r1.json()["escalated"] is True
    assert r1.json()["ticket_id"].startswith("ESC-")
    assert r1.json()["ticket_id"] == r2.json()["ticket_id"]


def test_end_then_message_fails(client: TestClient):
    session_id = start(client)
    ended = client.post("/api/conversation/end", json={"session_id": session_id})
    assert ended.status_code == 200
    assert ended.json() == {"success": True}

    after = client.post("/api/conversation/message", json={"session_id": session_id, "message": "hello?"})
    assert after.status_code == 404

    again = client.post("/api/conversation/end", json={"session_id": session_id})
    assert again.status_code == 404


def test_end_unknown_session(client: TestClient):
    response = client.post("/api/conversation/end", json={"session_id": "SES-unknown"})
    assert response.status_code == 404
    assert response.json()["detail"] == "session_not_found"
