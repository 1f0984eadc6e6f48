from __future__ import annotations

import asyncio

from bridge.registry import SessionRegistry
from bridge.session import CallSession
from fakes import FakePeerConnection


def _session(call_id: str) -> CallSession:
    return CallSession(
        call_id=call_id,
        caller_name="Alice",
        caller_id="111",
        telephony_offer_sdp="S1",
        telephony_connection=FakePeerConnection(f"{call_id}/telephony"),
    )


def test_add_refuses_a_second_session_for_the_same_call():
    registry = SessionRegistry()

    async def scenario():
        first = await registry.add(_session("call-1"))
        second = await registry.add(_session("call-1"))
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert len(registry) == 1
    assert "call-1" in registry


def test_concurrent_pops_hand_out_the_session_once():
    registry = SessionRegistry()
    session = _session("call-1")

    async def scenario():
        await registry.add(session)
        return await asyncio.gather(*(registry.pop("call-1") for _ in range(5)))

    results = asyncio.run(scenario())

    assert [result for result in results if result is not None] == [session]
    assert registry.get("call-1") is None


def test_snapshot_is_detached_from_the_store():
    registry = SessionRegistry()

    async def scenario():
        await registry.add(_session("call-1"))
        await registry.add(_session("call-2"))
        snapshot = await registry.snapshot()
        await registry.pop("call-1")
        return snapshot

    snapshot = asyncio.run(scenario())

    assert sorted(session.call_id for session in snapshot) == ["call-1", "call-2"]
    assert len(registry) == 1
