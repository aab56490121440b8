"""Media boundaries — capture, tracks, transport and audio analysis.

Architecture
~~~~~~~~~~~~
* **MediaTrack / VideoTrack / AudioTrack** — one local or remote stream.
* **MediaCapture** — acquires local camera + microphone as a
  :class:`CaptureHandle`.
* **Transport** — a peer connection: offer/answer, connection state,
  incoming tracks and statistics.
* **AudioAnalyzer** — frequency-domain energy of an audio track.

Concrete simulated implementations live in
:mod:`companion_agent.session.simulated`; a production deployment plugs a
real media stack in behind the same classes.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Literal

import structlog

from companion_agent.emotion.tracker import PixelBuffer

if TYPE_CHECKING:
    from companion_agent.config import Settings

logger = structlog.get_logger(__name__)

TrackKind = Literal["audio", "video"]


class ConnectionState(str, Enum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SessionDescription:
    """An SDP offer or answer."""

    type: Literal["offer", "answer"]
    sdp: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> SessionDescription:
        kind = "offer" if data.get("type") == "offer" else "answer"
        return cls(type=kind, sdp=data.get("sdp", ""))


@dataclass(frozen=True, slots=True)
class CaptureConstraints:
    """Requested capture settings (ideal values, not hard requirements)."""

    video_width: int = 1920
    video_height: int = 1080
    frame_rate: int = 30
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> CaptureConstraints:
        return cls(
            video_width=settings.video_width,
            video_height=settings.video_height,
            frame_rate=settings.video_frame_rate,
        )


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded RGBA video frame grabbed from a track."""

    width: int
    height: int
    rgba: bytes


def to_pixel_buffer(frame: Frame) -> PixelBuffer:
    """Convert a grabbed frame into the buffer the emotion tracker analyses."""
    return PixelBuffer(width=frame.width, height=frame.height, data=frame.rgba)


@dataclass(frozen=True, slots=True)
class StatsReport:
    """One entry of a transport statistics snapshot.

    ``type`` is ``"inbound-rtp"`` (with ``kind`` and packet counters) or
    ``"candidate-pair"`` (with ``state``).
    """

    type: str
    kind: TrackKind | None = None
    packets_lost: int | None = None
    packets_received: int | None = None
    state: str | None = None


# ── Tracks ────────────────────────────────────────────────────


class MediaTrack(ABC):
    """A single audio or video stream."""

    kind: TrackKind

    def __init__(self, track_id: str | None = None) -> None:
        self.id = track_id or uuid.uuid4().hex
        self.enabled = True

    @property
    @abstractmethod
    def ended(self) -> bool:
        """``True`` once :meth:`stop` has run."""

    @abstractmethod
    def stop(self) -> None:
        """Release the underlying device or stream."""


class VideoTrack(MediaTrack):
    kind: TrackKind = "video"

    @abstractmethod
    async def grab_frame(self) -> Frame:
        """Return the current frame.  Raises if the track cannot deliver."""


class AudioTrack(MediaTrack):
    kind: TrackKind = "audio"


@dataclass
class CaptureHandle:
    """Local tracks acquired by a :class:`MediaCapture`."""

    tracks: list[MediaTrack] = field(default_factory=list)

    @property
    def video_track(self) -> VideoTrack | None:
        return next((t for t in self.tracks if isinstance(t, VideoTrack)), None)

    @property
    def audio_track(self) -> AudioTrack | None:
        return next((t for t in self.tracks if isinstance(t, AudioTrack)), None)

    def stop(self) -> None:
        """Stop every track exactly once and forget them."""
        tracks, self.tracks = self.tracks, []
        for track in tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("media.track_stop_failed", track=track.id, kind=track.kind)


class MediaCapture(ABC):
    """Acquire local audio/video."""

    @abstractmethod
    async def acquire(self, constraints: CaptureConstraints) -> CaptureHandle:
        """Return the acquired tracks.

        Raises :class:`~companion_agent.errors.AcquisitionError` when the
        devices are unavailable or permission is denied.
        """


# ── Transport ─────────────────────────────────────────────────

TrackHandler = Callable[[MediaTrack], None]
StateHandler = Callable[[ConnectionState], None]


class Transport(ABC):
    """A real-time peer connection.

    Subclasses implement the offer/answer exchange and call
    :meth:`_emit_track` / :meth:`_set_state` as the connection evolves;
    handler bookkeeping lives here.
    """

    def __init__(self, ice_servers: list[str] | None = None) -> None:
        self.ice_servers: list[str] = list(ice_servers or [])
        self.local_tracks: list[MediaTrack] = []
        self.local_description: SessionDescription | None = None
        self.remote_description: SessionDescription | None = None
        self._state = ConnectionState.NEW
        self._track_handlers: list[TrackHandler] = []
        self._state_handlers: list[StateHandler] = []

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    def add_track(self, track: MediaTrack) -> None:
        self.local_tracks.append(track)

    def on_track(self, handler: TrackHandler) -> None:
        self._track_handlers.append(handler)

    def on_connection_state_change(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    def _emit_track(self, track: MediaTrack) -> None:
        for handler in list(self._track_handlers):
            handler(track)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.debug("transport.state_changed", state=state.value)
        for handler in list(self._state_handlers):
            handler(state)

    @abstractmethod
    async def create_offer(self) -> SessionDescription: ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None: ...

    @abstractmethod
    async def get_stats(self) -> list[StatsReport]: ...

    @abstractmethod
    async def close(self) -> None: ...


TransportFactory = Callable[[list[str]], Transport]


# ── Audio analysis ────────────────────────────────────────────


class AudioAnalyzer(ABC):
    """Frequency analysis context bound to one audio track."""

    fft_size: int = 2048

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    @abstractmethod
    async def open(self, track: AudioTrack) -> None:
        """Attach to *track*.  Raises if the track cannot be analysed."""

    @abstractmethod
    def frequency_data(self) -> bytes:
        """Current energy per frequency bin, each in ``0..255``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the analysis context."""
