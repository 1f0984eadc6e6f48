from __future__ import annotations

import asyncio

from bridge.session import CallSession


class SessionRegistry:
    """In-memory store of live call sessions keyed by call id.

    Note: This is a single-process store. For multi-worker deployments, calls
    must be pinned to the worker that received their webhook.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}

    async def add(self, session: CallSession) -> bool:
        """Insert ``session`` unless its call id is already live."""

        async with self._lock:
            if session.call_id in self._sessions:
                return False
            self._sessions[session.call_id] = session
            return True

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    async def pop(self, call_id: str) -> CallSession | None:
        """Remove and return the session; only one caller ever receives it."""

        async with self._lock:
            return self._sessions.pop(call_id, None)

    async def snapshot(self) -> list[CallSession]:
        async with self._lock:
            return list(self._sessions.values())

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
