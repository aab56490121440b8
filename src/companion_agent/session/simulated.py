"""Simulated media stack — runs a full session without devices or a peer.

* **SimulatedCapture** — synthetic camera frames + a silent microphone.
* **DisabledCapture** — always fails acquisition (``capture_backend=none``).
* **LoopbackTransport** — a peer connection that "connects" as soon as a
  remote answer is set and reports plausible statistics.
* **SimulatedAudioAnalyzer** — random but well-formed frequency bins.
"""

from __future__ import annotations

import asyncio
import random
import uuid
from typing import TYPE_CHECKING

import structlog

from companion_agent.errors import AcquisitionError, NegotiationError
from companion_agent.session.media import (
    AudioAnalyzer,
    AudioTrack,
    CaptureConstraints,
    CaptureHandle,
    ConnectionState,
    Frame,
    MediaCapture,
    SessionDescription,
    StatsReport,
    Transport,
    VideoTrack,
)

if TYPE_CHECKING:
    from companion_agent.config import Settings

logger = structlog.get_logger(__name__)

# Frames are produced at analysis resolution, not capture resolution.
ANALYSIS_WIDTH = 64
ANALYSIS_HEIGHT = 36


class SimulatedVideoTrack(VideoTrack):
    def __init__(
        self,
        width: int = ANALYSIS_WIDTH,
        height: int = ANALYSIS_HEIGHT,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__()
        self.width = width
        self.height = height
        self._rng = rng or random.Random()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def stop(self) -> None:
        self._ended = True

    async def grab_frame(self) -> Frame:
        if self._ended:
            raise RuntimeError(f"video track {self.id} has ended")
        luma = self._rng.randrange(40, 216)
        pixel = bytes((luma, luma, luma, 255))
        return Frame(self.width, self.height, pixel * (self.width * self.height))


class SimulatedAudioTrack(AudioTrack):
    def __init__(self) -> None:
        super().__init__()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def stop(self) -> None:
        self._ended = True


class SimulatedCapture(MediaCapture):
    """Always succeeds, yielding one synthetic video and one audio track."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def acquire(self, constraints: CaptureConstraints) -> CaptureHandle:
        handle = CaptureHandle([SimulatedVideoTrack(rng=self._rng), SimulatedAudioTrack()])
        logger.info(
            "capture.acquired",
            kind="simulated",
            width=constraints.video_width,
            height=constraints.video_height,
            frame_rate=constraints.frame_rate,
        )
        return handle


class DisabledCapture(MediaCapture):
    """No capture devices: every session starts in simulated mode."""

    async def acquire(self, constraints: CaptureConstraints) -> CaptureHandle:
        raise AcquisitionError("capture backend is disabled")


def create_capture(settings: Settings, rng: random.Random | None = None) -> MediaCapture:
    if settings.capture_backend == "none":
        return DisabledCapture()
    return SimulatedCapture(rng)


class LoopbackTransport(Transport):
    """In-process peer connection.

    Setting a remote answer schedules the transition to ``connected`` on
    the next loop iteration and delivers one remote video and audio track.
    """

    def __init__(
        self,
        ice_servers: list[str] | None = None,
        *,
        packet_loss: float = 0.01,
        packets_per_poll: int = 1000,
    ) -> None:
        super().__init__(ice_servers)
        self._packet_loss = packet_loss
        self._packets_per_poll = packets_per_poll
        self._received = 0
        self._remote_tracks: list[SimulatedVideoTrack | SimulatedAudioTrack] = []

    async def create_offer(self) -> SessionDescription:
        if self.connection_state is ConnectionState.CLOSED:
            raise NegotiationError("transport is closed")
        media = " ".join(t.kind for t in self.local_tracks) or "none"
        sdp = f"v=0\r\no=- {uuid.uuid4().int % 10**12} 2 IN IP4 127.0.0.1\r\ns=-\r\na=media:{media}\r\n"
        return SessionDescription(type="offer", sdp=sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local_description = description

    async def set_remote_description(self, description: SessionDescription) -> None:
        if self.connection_state is ConnectionState.CLOSED:
            raise NegotiationError("transport is closed")
        if self.local_description is None:
            raise NegotiationError("remote answer set before a local offer")
        if description.type != "answer":
            raise NegotiationError(f"expected an answer, got {description.type!r}")
        self.remote_description = description
        self._set_state(ConnectionState.CONNECTING)
        asyncio.get_running_loop().call_soon(self._connect)

    def _connect(self) -> None:
        if self.connection_state is not ConnectionState.CONNECTING:
            return
        self._remote_tracks = [SimulatedVideoTrack(), SimulatedAudioTrack()]
        for track in self._remote_tracks:
            self._emit_track(track)
        self._set_state(ConnectionState.CONNECTED)

    async def get_stats(self) -> list[StatsReport]:
        if self.connection_state is not ConnectionState.CONNECTED:
            return []
        self._received += self._packets_per_poll
        lost = int(self._received * self._packet_loss)
        return [
            StatsReport(type="inbound-rtp", kind="video", packets_lost=lost, packets_received=self._received),
            StatsReport(type="inbound-rtp", kind="audio", packets_lost=lost // 2, packets_received=self._received),
            StatsReport(type="candidate-pair", state="succeeded"),
        ]

    async def close(self) -> None:
        for track in self._remote_tracks:
            if not track.ended:
                track.stop()
        self._remote_tracks = []
        self._set_state(ConnectionState.CLOSED)


class SimulatedAudioAnalyzer(AudioAnalyzer):
    """Emits decaying random energy across the spectrum."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._track: AudioTrack | None = None
        self.closed = False

    async def open(self, track: AudioTrack) -> None:
        if track.ended:
            raise ValueError(f"audio track {track.id} has ended")
        self._track = track

    def frequency_data(self) -> bytes:
        if self._track is None or self.closed:
            raise RuntimeError("analyzer is not attached to a track")
        bins = self.bin_count
        gain = self._rng.random()
        return bytes(int(255 * gain * (1 - i / bins)) for i in range(bins))

    async def close(self) -> None:
        self.closed = True
        self._track = None
