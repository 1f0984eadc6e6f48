from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

LOGGER = logging.getLogger(__name__)


class BrowserChannel:
    """One connected operator console."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self.id = uuid.uuid4().hex[:12]

    async def send(self, message: dict[str, Any]) -> bool:
        try:
            await self._websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            LOGGER.warning("Dropping %s for channel %s: %s", message.get("type"), self.id, exc)
            return False
        return True

    def __repr__(self) -> str:
        return f"BrowserChannel({self.id})"


class SignalingRelay:
    """Tracks connected browser channels and fans out server notices."""

    def __init__(self) -> None:
        self._channels: dict[str, BrowserChannel] = {}

    @property
    def channels(self) -> list[BrowserChannel]:
        return list(self._channels.values())

    def register(self, websocket: WebSocket) -> BrowserChannel:
        channel = BrowserChannel(websocket)
        self._channels[channel.id] = channel
        LOGGER.info("Browser channel %s connected (%d total)", channel.id, len(self._channels))
        return channel

    def unregister(self, channel: BrowserChannel) -> None:
        if self._channels.pop(channel.id, None) is not None:
            LOGGER.info("Browser channel %s disconnected (%d left)", channel.id, len(self._channels))

    async def broadcast(self, message: dict[str, Any]) -> int:
        delivered = 0
        for channel in self.channels:
            if await channel.send(message):
                delivered += 1
        if not delivered:
            LOGGER.warning("No browser channel received %s for %s", message.get("type"), message.get("callId"))
        return delivered
