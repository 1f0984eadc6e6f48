"""Browser operator signaling over WebSocket."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.dependencies import get_orchestrator, get_relay
from bridge.orchestrator import BridgeOrchestrator
from signaling.messages import parse_browser_message
from signaling.relay import SignalingRelay

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["signaling"])


@router.websocket("/ws")
async def browser_signaling(
    websocket: WebSocket,
    orchestrator: BridgeOrchestrator = Depends(get_orchestrator),
    relay: SignalingRelay = Depends(get_relay),
) -> None:
    # Registered before the handshake completes so no broadcast is missed.
    channel = relay.register(websocket)
    in_flight: set[asyncio.Task] = set()
    try:
        await websocket.accept()
        while True:
            text = await websocket.receive_text()
            try:
                message = parse_browser_message(text)
            except ValidationError as exc:
                LOGGER.warning("Malformed message on channel %s: %s", channel.id, exc.errors(include_url=False))
                continue
            task = orchestrator.submit(channel, message)
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    except WebSocketDisconnect:
        pass
    finally:
        relay.unregister(channel)
        # Let this channel's own messages land before treating it as gone.
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        await orchestrator.handle_channel_closed(channel)
