from __future__ import annotations

from fastapi.testclient import TestClient

from integrations.calling_api import CallAction


def _call_payload(call: dict, contacts: list | None = None) -> dict:
    value: dict = {"messaging_product": "whatsapp", "calls": [call]}
    if contacts is not None:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": [{"field": "calls", "value": value}]}]}


CONNECT_PAYLOAD = _call_payload(
    {"id": "call-1", "event": "connect", "session": {"sdp_type": "offer", "sdp": "S1"}},
    contacts=[{"profile": {"name": "Alice"}, "wa_id": "111"}],
)
TERMINATE_PAYLOAD = _call_payload({"id": "call-1", "event": "terminate", "status": "COMPLETED"})


class ExplodingOrchestrator:
    async def handle_call_event(self, event) -> None:
        raise RuntimeError("registry unavailable")


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_webhook_verification_echoes_challenge(client):
    response = client.get(
        "/api/call-events",
        params={"hub.mode": "subscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "1158201444"},
    )
    assert response.status_code == 200
    assert response.text == "1158201444"


def test_webhook_verification_rejects_wrong_token(client):
    response = client.get(
        "/api/call-events",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1158201444"},
    )
    assert response.status_code == 403


def test_webhook_acknowledges_non_call_payloads(client, bridge):
    response = client.post("/api/call-events", json={"entry": [{"changes": [{"value": {"statuses": []}}]}]})
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}

    response = client.post("/api/call-events", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 200
    assert len(bridge.registry) == 0


def test_webhook_connect_creates_session_and_lists_it(client, bridge):
    response = client.post("/api/call-events", json=CONNECT_PAYLOAD)
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    calls = client.get("/api/calls").json()
    assert len(calls) == 1
    assert calls[0]["callId"] == "call-1"
    assert calls[0]["callerName"] == "Alice"
    assert calls[0]["callerId"] == "111"
    assert calls[0]["state"] == "ringing"


def test_webhook_internal_fault_returns_500(app):
    import api.dependencies as deps

    app.dependency_overrides[deps.get_orchestrator] = lambda: ExplodingOrchestrator()
    try:
        with TestClient(app) as client:
            response = client.post("/api/call-events", json=CONNECT_PAYLOAD)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500


def test_browser_answers_and_call_is_terminated_remotely(client, bridge):
    with client.websocket_connect("/api/ws") as ws:
        assert client.post("/api/call-events", json=CONNECT_PAYLOAD).status_code == 200

        assert ws.receive_json() == {"type": "incoming-call", "callId": "call-1", "callerName": "Alice", "callerId": "111"}
        assert ws.receive_json() == {"type": "offer", "callId": "call-1", "callerName": "Alice", "sdp": "answer-to:S1"}

        ws.send_json({"type": "answer", "callId": "call-1", "sdp": "S2"})
        assert ws.receive_json() == {"type": "active", "callId": "call-1"}

        assert client.post("/api/call-events", json=TERMINATE_PAYLOAD).status_code == 200
        assert ws.receive_json() == {"type": "terminated", "callId": "call-1"}

    assert bridge.api.actions() == ["pre_accept", "accept"]
    assert len(bridge.registry) == 0
    assert bridge.leg("call-1", "telephony").closed
    assert bridge.leg("call-1", "browser").closed


def test_browser_hangup_terminates_call(client, bridge):
    with client.websocket_connect("/api/ws") as ws:
        client.post("/api/call-events", json=CONNECT_PAYLOAD)
        ws.receive_json()
        ws.receive_json()

        # Malformed frames are ignored without closing the channel.
        ws.send_text("{not json")
        ws.send_json({"type": "dance", "callId": "call-1"})

        ws.send_json({"type": "answer", "callId": "call-1", "sdp": "S2"})
        assert ws.receive_json()["type"] == "active"
        ws.send_json({"type": "hangup", "callId": "call-1"})

    # Leaving the block waits for the channel handler, so the hangup has been processed.
    assert bridge.api.actions() == ["pre_accept", "accept", "terminate"]
    assert bridge.api.calls[-1] == ("call-1", CallAction.TERMINATE, None)
    assert client.get("/api/calls").json() == []
