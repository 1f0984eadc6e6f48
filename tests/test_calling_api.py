from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from bridge.errors import ConfigurationError
from config.settings import Settings
from integrations.calling_api import CallAction, CallingApiClient


def _run(coro):
    return asyncio.run(coro)


def _settings(**overrides) -> Settings:
    values = {"phone_number_id": "PN123", "access_token": "token-abc"}
    values.update(overrides)
    return Settings(**values)


def _client(handler) -> CallingApiClient:
    return CallingApiClient(_settings(), transport=httpx.MockTransport(handler))


def test_pre_accept_posts_sdp_answer_with_bearer_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    client = _client(handler)
    ok = _run(client.send("call-1", CallAction.PRE_ACCEPT, "v=0"))

    assert ok is True
    request = seen[0]
    assert str(request.url) == "https://graph.facebook.com/v19.0/PN123/calls"
    assert request.headers["Authorization"] == "Bearer token-abc"
    assert json.loads(request.content) == {
        "messaging_product": "whatsapp",
        "call_id": "call-1",
        "action": "pre_accept",
        "session": {"sdp_type": "answer", "sdp": "v=0"},
    }


def test_terminate_never_carries_a_session():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    client = _client(handler)
    assert _run(client.send("call-1", "terminate", "v=0")) is True
    assert "session" not in bodies[0]
    assert bodies[0]["action"] == "terminate"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"success": False}),
        httpx.Response(200, json={"success": "true"}),
        httpx.Response(400, json={"error": {"message": "Invalid call id", "code": 100}}),
        httpx.Response(500, text="upstream exploded"),
    ],
)
def test_failure_responses_return_false(response):
    client = _client(lambda request: response)
    assert _run(client.send("call-1", CallAction.ACCEPT, "v=0")) is False


def test_transport_errors_return_false():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    assert _run(client.send("call-1", CallAction.REJECT)) is False


def test_missing_credentials_are_a_configuration_error():
    with pytest.raises(ConfigurationError):
        CallingApiClient(_settings(access_token=None))
