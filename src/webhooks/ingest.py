"""Decoding of calling-service webhooks.

The calling service nests one call object per delivery:
``entry[0].changes[0].value.calls[0]`` with ``id``, ``event`` and, for
``connect``, ``session.sdp``. Caller metadata lives in ``value.contacts[0]``.
"""

from __future__ import annotations

import hmac
from typing import Any

from pydantic import BaseModel, Field

from bridge.errors import InvalidWebhookPayloadError, WebhookVerificationError

UNKNOWN_CALLER = "Unknown"

CONNECT = "connect"
TERMINATE = "terminate"


class CallEvent(BaseModel):
    """One decoded call-control event."""

    call_id: str
    event: str
    sdp: str | None = None
    caller_name: str = Field(default=UNKNOWN_CALLER)
    caller_id: str = Field(default=UNKNOWN_CALLER)


def verify_subscription(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    *,
    expected_token: str | None,
) -> str:
    """Return the challenge to echo back, or raise ``WebhookVerificationError``."""

    if mode != "subscribe" or not expected_token or token is None:
        raise WebhookVerificationError()
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        raise WebhookVerificationError()
    return challenge or ""


def _first(items: Any) -> dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def parse_call_event(payload: Any) -> CallEvent:
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook body is not a JSON object.")

    value = _first(_first(payload.get("entry")).get("changes")).get("value")
    if not isinstance(value, dict):
        raise InvalidWebhookPayloadError("Webhook body has no change value.")

    call = _first(value.get("calls"))
    call_id = str(call.get("id") or "").strip()
    event = str(call.get("event") or "").strip()
    if not call_id or not event:
        raise InvalidWebhookPayloadError("Webhook body carries no call event.")

    session = call.get("session") or {}
    sdp = session.get("sdp") if isinstance(session, dict) else None
    if event == CONNECT and not sdp:
        raise InvalidWebhookPayloadError(f"Connect event for {call_id} has no SDP offer.")

    contact = _first(value.get("contacts"))
    profile = contact.get("profile") or {}
    caller_name = profile.get("name") if isinstance(profile, dict) else None

    return CallEvent(
        call_id=call_id,
        event=event,
        sdp=sdp or None,
        caller_name=str(caller_name or UNKNOWN_CALLER),
        caller_id=str(contact.get("wa_id") or UNKNOWN_CALLER),
    )
