"""State machine bridging a calling-service call to a browser operator.

A call moves ringing -> answering -> active and may be terminated from any
state. Every teardown path converges on :meth:`BridgeOrchestrator.cleanup`,
which only the first caller for a given call id gets to perform.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Protocol

from bridge.errors import ControlPlaneError, MediaSetupError
from bridge.registry import SessionRegistry
from bridge.session import CallSession, CallState, PendingCandidate, TerminationReason
from integrations.calling_api import CallAction
from signaling.messages import (
    AnswerMessage,
    BrowserMessage,
    CandidateMessage,
    HangupMessage,
    RejectMessage,
    active_notice,
    candidate_notice,
    incoming_call_notice,
    offer_notice,
    terminated_notice,
)
from webhooks.ingest import CONNECT, TERMINATE, CallEvent

if TYPE_CHECKING:  # pragma: no cover
    from signaling.relay import BrowserChannel, SignalingRelay
    from telephony.peer_connection import PeerConnection

LOGGER = logging.getLogger(__name__)


class CallActionSender(Protocol):
    async def send(self, call_id: str, action: CallAction, sdp: str | None = None) -> bool: ...


ConnectionFactory = Callable[[str], "PeerConnection"]


class BridgeOrchestrator:
    """Drives each call from the connect webhook to an active, bridged call."""

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        relay: SignalingRelay,
        api_client: CallActionSender,
        connection_factory: ConnectionFactory,
        accept_delay: float = 1.0,
    ) -> None:
        self._registry = registry
        self._relay = relay
        self._api = api_client
        self._connection_factory = connection_factory
        self._accept_delay = accept_delay
        self._background: set[asyncio.Task] = set()
        self._call_locks: dict[str, asyncio.Lock] = {}
        self._call_lock_users: dict[str, int] = {}

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # Calling-service events

    async def handle_call_event(self, event: CallEvent) -> None:
        if event.event == CONNECT:
            await self.handle_connect(event)
        elif event.event == TERMINATE:
            await self.handle_terminate(event.call_id)
        else:
            LOGGER.info("Ignoring '%s' event for %s", event.event, event.call_id)

    async def handle_connect(self, event: CallEvent) -> None:
        call_id = event.call_id
        if call_id in self._registry:
            LOGGER.warning("Duplicate connect for live call %s ignored", call_id)
            return

        telephony = self._connection_factory(f"{call_id}/telephony")
        session = CallSession(
            call_id=call_id,
            caller_name=event.caller_name,
            caller_id=event.caller_id,
            telephony_offer_sdp=event.sdp or "",
            telephony_connection=telephony,
        )
        if not await self._registry.add(session):
            LOGGER.warning("Duplicate connect for live call %s ignored", call_id)
            await telephony.close()
            return

        LOGGER.info("Incoming call %s from %s (%s)", call_id, session.caller_name, session.caller_id)
        telephony.on_track(lambda track: self._forward_from_telephony(session, track))

        try:
            await telephony.set_remote_offer(session.telephony_offer_sdp)
            answer = await telephony.create_answer()
            await telephony.set_local_answer(answer)
            local_sdp = telephony.local_description or answer
        except Exception:
            LOGGER.exception("Media setup for call %s failed", call_id)
            await self.cleanup(call_id, TerminationReason.FAILURE)
            return

        if not self._is_live(session):
            return

        # The answer to the calling service doubles as the offer to the browser.
        await self._relay.broadcast(incoming_call_notice(call_id, session.caller_name, session.caller_id))
        await self._relay.broadcast(offer_notice(call_id, session.caller_name, local_sdp))

    async def handle_terminate(self, call_id: str) -> None:
        if not await self.cleanup(call_id, TerminationReason.REMOTE_TERMINATED):
            LOGGER.info("Terminate for unknown call %s ignored", call_id)

    # Browser messages

    def submit(self, channel: BrowserChannel, message: BrowserMessage) -> asyncio.Task:
        """Dispatch `message` in the background.

        Messages for one call are handled in submission order; messages for
        different calls never wait on each other.
        """

        task = asyncio.create_task(
            self._dispatch_in_order(channel, message), name=f"{message.type}-{message.call_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def dispatch(self, channel: BrowserChannel, message: BrowserMessage) -> None:
        if isinstance(message, AnswerMessage):
            await self.handle_answer(channel, message.call_id, message.sdp)
        elif isinstance(message, CandidateMessage):
            await self.handle_candidate(channel, message.call_id, message.candidate)
        elif isinstance(message, HangupMessage):
            await self.handle_hangup(channel, message.call_id)
        elif isinstance(message, RejectMessage):
            await self.handle_reject(channel, message.call_id)

    async def handle_answer(self, channel: BrowserChannel, call_id: str, sdp: str) -> None:
        session = self._registry.get(call_id)
        if session is None:
            LOGGER.info("Answer for unknown call %s ignored", call_id)
            return
        if session.state is not CallState.RINGING:
            LOGGER.warning("Answer for call %s in state %s ignored", call_id, session.state.value)
            return

        session.state = CallState.ANSWERING
        session.browser_channel = channel
        LOGGER.info("Call %s answered on channel %s", call_id, channel.id)

        try:
            await self._bridge_browser_leg(session, channel, sdp)
        except ControlPlaneError as exc:
            LOGGER.error("Abandoning call %s: %s", call_id, exc.detail)
            await self.cleanup(call_id, TerminationReason.FAILURE)
        except Exception:
            LOGGER.exception("Bridging call %s failed", call_id)
            await self.cleanup(call_id, TerminationReason.FAILURE)

    async def handle_candidate(self, channel: BrowserChannel, call_id: str, candidate: dict[str, Any]) -> None:
        session = self._registry.get(call_id)
        if session is None:
            LOGGER.info("Candidate for unknown call %s dropped", call_id)
            return
        if session.browser_channel is not None and session.browser_channel is not channel:
            LOGGER.warning("Candidate for call %s from unbound channel %s ignored", call_id, channel.id)
            return
        if session.browser_connection is None:
            session.pending_candidates.append(PendingCandidate(channel=channel, candidate=candidate))
            return
        await self._add_candidate(session, candidate)

    async def handle_hangup(self, channel: BrowserChannel, call_id: str) -> None:
        await self._end_from_browser(channel, call_id, TerminationReason.BROWSER_HANGUP, CallAction.TERMINATE)

    async def handle_reject(self, channel: BrowserChannel, call_id: str) -> None:
        await self._end_from_browser(channel, call_id, TerminationReason.BROWSER_REJECT, CallAction.REJECT)

    async def handle_channel_closed(self, channel: BrowserChannel) -> None:
        for session in await self._registry.snapshot():
            if session.browser_channel is channel:
                await self._end_from_browser(
                    channel, session.call_id, TerminationReason.CHANNEL_CLOSED, CallAction.TERMINATE
                )
            else:
                session.pending_candidates = [
                    pending for pending in session.pending_candidates if pending.channel is not channel
                ]

    # Teardown

    async def cleanup(self, call_id: str, reason: TerminationReason) -> bool:
        """Tear down ``call_id``; returns False when another caller already did."""

        session = await self._registry.pop(call_id)
        if session is None:
            return False

        previous = session.state
        session.state = CallState.TERMINATED
        LOGGER.info("Tearing down call %s (%s, was %s)", call_id, reason.value, previous.value)

        task = session.accept_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        for connection in (session.browser_connection, session.telephony_connection):
            if connection is None:
                continue
            try:
                await connection.close()
            except Exception:
                LOGGER.exception("Closing a leg of call %s failed", call_id)

        session.pending_candidates.clear()
        session.telephony_tracks.clear()

        if reason is TerminationReason.REMOTE_TERMINATED:
            notice = terminated_notice(call_id)
            if session.browser_channel is not None:
                await session.browser_channel.send(notice)
            else:
                await self._relay.broadcast(notice)
        return True

    async def shutdown(self) -> None:
        for session in await self._registry.snapshot():
            await self.cleanup(session.call_id, TerminationReason.SHUTDOWN)
        for task in list(self._background):
            task.cancel()

    async def list_calls(self) -> list[dict[str, Any]]:
        return [session.summary() for session in await self._registry.snapshot()]

    # Internals

    async def _bridge_browser_leg(self, session: CallSession, channel: BrowserChannel, sdp: str) -> None:
        call_id = session.call_id
        offer_sdp = session.telephony_connection.local_description
        if not offer_sdp:
            raise MediaSetupError(f"Telephony leg of call {call_id} has no local description.")

        # Track wiring happens before any await so no telephony track is forwarded twice.
        browser = self._connection_factory(f"{call_id}/browser")
        for track in list(session.telephony_tracks):
            browser.add_track(track)
        session.browser_connection = browser
        browser.on_track(lambda track: session.telephony_connection.add_track(track))
        browser.on_ice_candidate(lambda candidate: self._send_candidate(session, candidate))

        await browser.set_remote_offer(offer_sdp)
        await browser.set_local_answer(sdp)

        pending, session.pending_candidates = session.pending_candidates, []
        for item in pending:
            if item.channel is channel:
                await self._add_candidate(session, item.candidate)

        if not self._is_live(session):
            return
        if not await self._api.send(call_id, CallAction.PRE_ACCEPT, offer_sdp):
            raise ControlPlaneError(f"pre_accept for call {call_id} was not accepted")
        if not self._is_live(session):
            return

        session.accept_task = asyncio.create_task(
            self._accept_after_delay(session, offer_sdp), name=f"accept-{call_id}"
        )

    async def _accept_after_delay(self, session: CallSession, sdp: str) -> None:
        call_id = session.call_id
        await asyncio.sleep(self._accept_delay)
        if not self._is_live(session):
            return

        if not await self._api.send(call_id, CallAction.ACCEPT, sdp):
            LOGGER.error("Abandoning call %s: accept was not accepted", call_id)
            await self.cleanup(call_id, TerminationReason.FAILURE)
            return
        if not self._is_live(session):
            return

        session.state = CallState.ACTIVE
        LOGGER.info("Call %s is active", call_id)
        if session.browser_channel is not None:
            await session.browser_channel.send(active_notice(call_id))

    async def _dispatch_in_order(self, channel: BrowserChannel, message: BrowserMessage) -> None:
        call_id = message.call_id
        lock = self._call_locks.setdefault(call_id, asyncio.Lock())
        self._call_lock_users[call_id] = self._call_lock_users.get(call_id, 0) + 1
        try:
            async with lock:
                await self.dispatch(channel, message)
        except Exception:
            LOGGER.exception("Handling '%s' for call %s failed", message.type, call_id)
        finally:
            self._call_lock_users[call_id] -= 1
            if not self._call_lock_users[call_id]:
                del self._call_lock_users[call_id]
                del self._call_locks[call_id]

    async def _end_from_browser(
        self,
        channel: BrowserChannel,
        call_id: str,
        reason: TerminationReason,
        action: CallAction,
    ) -> None:
        session = self._registry.get(call_id)
        if session is None:
            LOGGER.info("%s for unknown call %s ignored", reason.value, call_id)
            return
        if session.browser_channel is not None and session.browser_channel is not channel:
            LOGGER.warning("%s for call %s from unbound channel %s ignored", reason.value, call_id, channel.id)
            return

        if await self.cleanup(call_id, reason):
            await self._api.send(call_id, action)

    async def _add_candidate(self, session: CallSession, candidate: dict[str, Any]) -> None:
        if session.browser_connection is None:
            return
        try:
            await session.browser_connection.add_ice_candidate(candidate)
        except Exception:
            LOGGER.warning("Adding browser ICE candidate for call %s failed", session.call_id, exc_info=True)

    def _forward_from_telephony(self, session: CallSession, track: Any) -> None:
        session.telephony_tracks.append(track)
        if session.browser_connection is not None:
            session.browser_connection.add_track(track)

    def _send_candidate(self, session: CallSession, candidate: dict[str, Any]) -> None:
        channel = session.browser_channel
        if channel is None or not self._is_live(session):
            return
        task = asyncio.create_task(channel.send(candidate_notice(session.call_id, candidate)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _is_live(self, session: CallSession) -> bool:
        return session.state is not CallState.TERMINATED and self._registry.get(session.call_id) is session
