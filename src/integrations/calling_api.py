"""Client for the calling service's call-action endpoint."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

from bridge.errors import ConfigurationError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class CallAction(str, Enum):
    PRE_ACCEPT = "pre_accept"
    ACCEPT = "accept"
    REJECT = "reject"
    TERMINATE = "terminate"


_SDP_ACTIONS = {CallAction.PRE_ACCEPT, CallAction.ACCEPT}


class CallingApiClient:
    """Thin HTTP client posting call actions with a fixed bearer token.

    Every failure is reported as ``False``; nothing is retried here.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.phone_number_id or not settings.access_token:
            raise ConfigurationError("PHONE_NUMBER_ID and ACCESS_TOKEN must be configured.")

        self._endpoint = settings.calls_endpoint
        self._messaging_product = settings.messaging_product
        self._client = httpx.AsyncClient(
            timeout=settings.control_plane_timeout_seconds,
            headers={
                "Authorization": f"Bearer {settings.access_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def send(self, call_id: str, action: CallAction, sdp: str | None = None) -> bool:
        action = CallAction(action)
        payload: dict[str, Any] = {
            "messaging_product": self._messaging_product,
            "call_id": call_id,
            "action": action.value,
        }
        if sdp and action in _SDP_ACTIONS:
            payload["session"] = {"sdp_type": "answer", "sdp": sdp}

        try:
            response = await self._client.post(self._endpoint, json=payload)
        except httpx.HTTPError as exc:
            LOGGER.error("Call action '%s' for %s failed: %s", action.value, call_id, exc)
            return False

        try:
            body = response.json()
        except ValueError:
            body = {"text": response.text}

        success = isinstance(body, dict) and body.get("success") is True
        if success:
            LOGGER.info("Call action '%s' for %s accepted", action.value, call_id)
        else:
            LOGGER.error(
                "Call action '%s' for %s rejected (HTTP %s): %s",
                action.value,
                call_id,
                response.status_code,
                body,
            )
        return success

    async def aclose(self) -> None:
        await self._client.aclose()
