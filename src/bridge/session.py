"""Per-call state owned by the session registry."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from signaling.relay import BrowserChannel
    from telephony.peer_connection import PeerConnection


class CallState(str, Enum):
    RINGING = "ringing"
    ANSWERING = "answering"
    ACTIVE = "active"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    REMOTE_TERMINATED = "remote_terminated"
    BROWSER_HANGUP = "browser_hangup"
    BROWSER_REJECT = "browser_reject"
    CHANNEL_CLOSED = "channel_closed"
    FAILURE = "failure"
    SHUTDOWN = "shutdown"


@dataclass
class PendingCandidate:
    channel: BrowserChannel
    candidate: dict[str, Any]


@dataclass
class CallSession:
    call_id: str
    caller_name: str
    caller_id: str
    telephony_offer_sdp: str
    telephony_connection: PeerConnection
    state: CallState = CallState.RINGING
    browser_connection: PeerConnection | None = None
    browser_channel: BrowserChannel | None = None
    accept_task: asyncio.Task | None = None
    telephony_tracks: list[Any] = field(default_factory=list)
    pending_candidates: list[PendingCandidate] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def age_seconds(self) -> float:
        return max(0.0, time.time() - self.created_at)

    def summary(self) -> dict[str, Any]:
        return {
            "callId": self.call_id,
            "state": self.state.value,
            "callerName": self.caller_name,
            "callerId": self.caller_id,
            "ageSeconds": round(self.age_seconds, 1),
        }
