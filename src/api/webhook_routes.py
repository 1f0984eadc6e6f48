"""Calling-service webhook endpoints.

This module provides:
- Subscription verification (GET) echoing the challenge for a valid token.
- Call event delivery (POST) feeding connect/terminate events to the bridge.

Deliveries are always acknowledged unless handling a valid event faults
internally; a 500 makes the calling service retry the delivery.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from api.dependencies import get_orchestrator
from api.schemas import StatusResponse
from bridge.errors import InvalidWebhookPayloadError, WebhookVerificationError
from bridge.orchestrator import BridgeOrchestrator
from config.settings import get_settings
from webhooks.ingest import parse_call_event, verify_subscription

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.get("/call-events", response_class=PlainTextResponse)
async def verify_call_events_webhook(
    hub_mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    hub_verify_token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    hub_challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
) -> PlainTextResponse:
    settings = get_settings()
    try:
        challenge = verify_subscription(
            hub_mode,
            hub_verify_token,
            hub_challenge,
            expected_token=settings.verify_token,
        )
    except WebhookVerificationError as exc:
        LOGGER.error("Webhook verification failed (mode=%s)", hub_mode)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    LOGGER.info("Webhook verified")
    return PlainTextResponse(challenge)


@router.post("/call-events", response_model=StatusResponse)
async def receive_call_events(
    request: Request,
    orchestrator: BridgeOrchestrator = Depends(get_orchestrator),
):
    try:
        payload = await request.json()
    except ValueError:
        LOGGER.warning("Ignoring webhook delivery with a non-JSON body")
        return StatusResponse(status="ignored")

    try:
        event = parse_call_event(payload)
    except InvalidWebhookPayloadError as exc:
        LOGGER.info("Ignoring webhook delivery: %s", exc.detail)
        return StatusResponse(status="ignored")

    LOGGER.info("Call event '%s' for %s", event.event, event.call_id)
    try:
        await orchestrator.handle_call_event(event)
    except Exception:
        LOGGER.exception("Handling '%s' for %s failed", event.event, event.call_id)
        return JSONResponse(status_code=500, content={"status": "error"})

    return StatusResponse()
