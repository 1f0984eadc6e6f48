from __future__ import annotations

import asyncio
import fractions
import logging
import time
from typing import Any, Callable, Final

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.mediastreams import MediaStreamError, MediaStreamTrack
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from av import AudioFrame

LOGGER = logging.getLogger(__name__)

SAMPLE_RATE: Final[int] = 48000
FRAME_SAMPLES: Final[int] = 960  # 20ms at 48kHz

TrackCallback = Callable[[MediaStreamTrack], None]
CandidateCallback = Callable[[dict[str, Any]], None]


class ForwardedAudioTrack(MediaStreamTrack):
    """Outbound audio track that relays frames from another leg's remote track.

    Until a source is attached it emits paced stereo silence at 48kHz, matching
    what the Opus decoder hands back for remote tracks, so the sender's
    resampler sees a single frame layout for the whole call.
    """

    kind = "audio"

    def __init__(self) -> None:
        super().__init__()
        self._source: MediaStreamTrack | None = None
        self._pts = 0
        self._started_at: float | None = None

    @property
    def source(self) -> MediaStreamTrack | None:
        return self._source

    def attach(self, source: MediaStreamTrack) -> None:
        self._source = source

    async def recv(self) -> AudioFrame:
        if self.readyState != "live":
            raise MediaStreamError

        if self._source is not None:
            frame = await self._source.recv()
        else:
            frame = await self._silence()

        # Rebase timestamps so the switch from silence to relayed audio is seamless.
        frame.pts = self._pts
        frame.time_base = fractions.Fraction(1, frame.sample_rate)
        self._pts += frame.samples
        return frame

    async def _silence(self) -> AudioFrame:
        if self._started_at is None:
            self._started_at = time.monotonic()
        wait = self._started_at + self._pts / SAMPLE_RATE - time.monotonic()
        if wait > 0:
            await asyncio.sleep(wait)

        frame = AudioFrame(format="s16", layout="stereo", samples=FRAME_SAMPLES)
        for plane in frame.planes:
            plane.update(bytes(plane.buffer_size))
        frame.sample_rate = SAMPLE_RATE
        return frame


class PeerConnection:
    """One leg of a bridged call, wrapping an aiortc ``RTCPeerConnection``.

    The owner drives negotiation with ``set_remote_offer`` / ``create_answer`` /
    ``set_local_answer`` and learns about remote media through ``on_track``.
    Tracks that arrive before a callback is registered are replayed to it, and
    ICE candidates received before a remote description exists are held and
    applied in arrival order once it is set.
    """

    def __init__(self, ice_servers: list[dict[str, Any]] | None = None, *, label: str = "peer") -> None:
        self._label = label
        configuration = RTCConfiguration(iceServers=[RTCIceServer(**server) for server in ice_servers or []])
        self._pc = RTCPeerConnection(configuration=configuration)
        self._outbound = ForwardedAudioTrack()
        self._outbound_added = False
        self._track_callbacks: list[TrackCallback] = []
        self._candidate_callbacks: list[CandidateCallback] = []
        self._received_tracks: list[MediaStreamTrack] = []
        self._pending_candidates: list[dict[str, Any]] = []
        self._closed = False

        self._pc.on("track", self._handle_track)
        # aiortc normally embeds gathered candidates in the local description;
        # this only fires for stacks that trickle them.
        self._pc.on("icecandidate", self._handle_ice_candidate)
        self._pc.on("connectionstatechange", self._log_connection_state)

    @property
    def label(self) -> str:
        return self._label

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_description(self) -> str | None:
        description = self._pc.localDescription
        return description.sdp if description else None

    async def set_remote_offer(self, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        # The outbound track must exist before the answer so it is negotiated as sendrecv.
        if not self._outbound_added:
            self._pc.addTrack(self._outbound)
            self._outbound_added = True
        await self._flush_candidates()

    async def create_answer(self) -> str:
        answer = await self._pc.createAnswer()
        return answer.sdp

    async def set_local_answer(self, sdp: str) -> None:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        raw = str(candidate.get("candidate") or "").strip()
        if not raw:
            return
        if self._pc.remoteDescription is None:
            self._pending_candidates.append(candidate)
            return

        ice = candidate_from_sdp(raw.split(":", 1)[1] if raw.startswith("candidate:") else raw)
        ice.sdpMid = candidate.get("sdpMid")
        ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(ice)

    def add_track(self, track: MediaStreamTrack) -> None:
        if track.kind != "audio":
            LOGGER.debug("[%s] ignoring %s track", self._label, track.kind)
            return
        self._outbound.attach(track)
        LOGGER.info("[%s] forwarding remote audio track %s", self._label, track.id)

    def on_track(self, callback: TrackCallback) -> None:
        self._track_callbacks.append(callback)
        for track in list(self._received_tracks):
            callback(track)

    def on_ice_candidate(self, callback: CandidateCallback) -> None:
        self._candidate_callbacks.append(callback)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbound.stop()
        await self._pc.close()
        LOGGER.info("[%s] peer connection closed", self._label)

    async def _flush_candidates(self) -> None:
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            try:
                await self.add_ice_candidate(candidate)
            except Exception:
                LOGGER.warning("[%s] dropping buffered ICE candidate %r", self._label, candidate, exc_info=True)

    def _handle_track(self, track: MediaStreamTrack) -> None:
        LOGGER.info("[%s] remote %s track received", self._label, track.kind)
        self._received_tracks.append(track)
        for callback in list(self._track_callbacks):
            callback(track)

    def _handle_ice_candidate(self, candidate) -> None:
        if candidate is None:
            return
        message = {
            "candidate": f"candidate:{candidate_to_sdp(candidate)}",
            "sdpMid": candidate.sdpMid,
            "sdpMLineIndex": candidate.sdpMLineIndex,
        }
        for callback in list(self._candidate_callbacks):
            callback(message)

    def _log_connection_state(self) -> None:
        LOGGER.info("[%s] connection state: %s", self._label, self._pc.connectionState)
