"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.requests import HTTPConnection

from bridge.orchestrator import BridgeOrchestrator
from bridge.registry import SessionRegistry
from config.settings import Settings
from signaling.relay import SignalingRelay

if TYPE_CHECKING:  # pragma: no cover
    from integrations.calling_api import CallingApiClient


def build_orchestrator(
    settings: Settings,
    *,
    relay: SignalingRelay,
    api_client: CallingApiClient,
) -> BridgeOrchestrator:
    # Lazy import to avoid loading the media stack at module import time.
    from telephony.peer_connection import PeerConnection

    ice_servers = settings.ice_servers()
    return BridgeOrchestrator(
        registry=SessionRegistry(),
        relay=relay,
        api_client=api_client,
        connection_factory=lambda label: PeerConnection(ice_servers, label=label),
        accept_delay=settings.accept_delay_seconds,
    )


def get_orchestrator(connection: HTTPConnection) -> BridgeOrchestrator:
    return connection.app.state.orchestrator


def get_relay(connection: HTTPConnection) -> SignalingRelay:
    return connection.app.state.relay
