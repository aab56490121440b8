"""Session controller — lifecycle of one live avatar call.

States::

    idle ──start()──▶ negotiating ──real──────▶ active ───┐
                           │                              ├─end()─▶ ended
                           └────simulated───▶ degraded ───┘

``end()`` is idempotent and safe to call concurrently, from ``idle``, or
while negotiation is still running.  Every owned resource (local tracks,
remote tracks, audio analyser, transport, sampling loops, render tick) is
released exactly once.  ``start()`` after ``ended`` begins a new session
with a fresh id.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from companion_agent.avatar.expression import AvatarPresence, RenderParams
from companion_agent.avatar.models import AvatarConfig, AvatarState
from companion_agent.avatar.speech import (
    LogSpeechOutput,
    SpeechOutput,
    build_speech_request,
    select_reply,
)
from companion_agent.config import get_settings
from companion_agent.emotion.tracker import EmotionTracker, SimulatedEmotionTracker
from companion_agent.errors import NegotiationError
from companion_agent.logger import bind_session
from companion_agent.models import EmotionalState, utcnow
from companion_agent.session.media import (
    AudioAnalyzer,
    CaptureConstraints,
    CaptureHandle,
    MediaTrack,
    SessionDescription,
    Transport,
)
from companion_agent.session.negotiator import ConnectionMode, MediaNegotiator, NegotiationResult
from companion_agent.session.quality import CallQuality, measure_quality
from companion_agent.session.sampling import (
    AudioSampler,
    EmotionSample,
    LoudnessFeatures,
    PeriodicTask,
    SampleQueue,
    SamplingPipeline,
    VideoSampler,
    latest_sample,
)
from companion_agent.session.simulated import (
    LoopbackTransport,
    SimulatedAudioAnalyzer,
    create_capture,
)

if TYPE_CHECKING:
    from companion_agent.config import Settings

logger = structlog.get_logger(__name__)

Listener = Callable[[str, dict[str, Any]], Awaitable[None]]


class SessionState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    DEGRADED = "degraded"
    ENDED = "ended"


class CallState(BaseModel):
    session_id: str
    state: SessionState = SessionState.IDLE
    is_active: bool = False
    start_time: datetime | None = None
    duration_seconds: float = 0.0
    quality: str = "high"  # low | medium | high | ultra
    connection_type: ConnectionMode | None = None
    audio_enabled: bool = True
    video_enabled: bool = True
    avatar_config: AvatarConfig = Field(default_factory=AvatarConfig)
    emotional_state: EmotionalState = Field(default_factory=EmotionalState)
    user_engagement: float = 0.5


class SessionController:
    """Drive one live session at a time.  All collaborators are injected."""

    def __init__(
        self,
        negotiator: MediaNegotiator,
        *,
        tracker: EmotionTracker | None = None,
        analyzer_factory: Callable[[], AudioAnalyzer] | None = None,
        speech: SpeechOutput | None = None,
        avatar_config: AvatarConfig | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or get_settings()
        self._negotiator = negotiator
        self._tracker = tracker or SimulatedEmotionTracker()
        self._analyzer_factory = analyzer_factory
        self._speech = speech or LogSpeechOutput()
        self._default_avatar = avatar_config or AvatarConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._wall_clock = wall_clock

        self._video_interval = settings.video_sample_interval_seconds
        self._audio_interval = settings.audio_sample_interval_seconds
        self._render_interval = settings.render_interval_seconds
        self._tracker_timeout = settings.tracker_timeout_seconds
        self._queue_size = settings.sample_queue_size
        self._speech_interval = settings.speech_min_interval_seconds

        self._state = SessionState.IDLE
        self._call = CallState(session_id=uuid.uuid4().hex, avatar_config=self._default_avatar)
        self._presence = AvatarPresence()
        self._listeners: list[Listener] = []
        self._end_lock = asyncio.Lock()
        self._clear_resources()

    def _clear_resources(self) -> None:
        self._negotiation_task: asyncio.Task[NegotiationResult] | None = None
        self._capture: CaptureHandle | None = None
        self._transport: Transport | None = None
        self._remote_tracks: list[MediaTrack] = []
        self._analyzer: AudioAnalyzer | None = None
        self._pipeline: SamplingPipeline | None = None
        self._render_loop: PeriodicTask | None = None
        self._tracker_started = False
        self._queue = SampleQueue(self._queue_size)
        self._applied: EmotionSample | None = None
        self._last_speech: float | None = None
        self._speaking_until: float | None = None
        self._last_render: RenderParams | None = None

    # ── Properties ────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._call.session_id

    @property
    def last_render(self) -> RenderParams | None:
        return self._last_render

    @property
    def pipeline(self) -> SamplingPipeline | None:
        return self._pipeline

    @property
    def sample_queue(self) -> SampleQueue:
        return self._queue

    def on_update(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for ``avatar`` / ``speech`` / ``system`` events."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self, avatar_config: AvatarConfig | Mapping[str, Any] | None = None) -> CallState:
        """Negotiate media and begin sampling.  Never fails on media errors."""
        if self._state in (SessionState.NEGOTIATING, SessionState.ACTIVE, SessionState.DEGRADED):
            logger.warning("session.already_started", session=self.session_id, state=self._state.value)
            return self.get_call_state()

        self._new_call(avatar_config)
        self._set_state(SessionState.NEGOTIATING)
        task = asyncio.create_task(self._negotiator.negotiate())
        self._negotiation_task = task
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                self._set_state(SessionState.ENDED)
                raise
            # end() cancelled the negotiation
            return self.get_call_state()
        finally:
            if self._negotiation_task is task:
                self._negotiation_task = None

        if self._state is not SessionState.NEGOTIATING:
            await self._release_result(result)
            return self.get_call_state()

        self._adopt(result)
        await self._start_processing()
        if self._state is SessionState.ENDED:
            await self._release()
            return self.get_call_state()

        logger.info(
            "session.started",
            session=self.session_id,
            state=self._state.value,
            connection=result.mode.value,
            reason=result.reason,
        )
        await self._notify("system", {"event": "started", "call": self._call_payload()})
        return self.get_call_state()

    async def end(self) -> CallState:
        """End the session.  Safe to call repeatedly and concurrently."""
        async with self._end_lock:
            if self._state in (SessionState.IDLE, SessionState.ENDED):
                return self.get_call_state()
            self._set_state(SessionState.ENDED)

            task = self._negotiation_task
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if self._call.start_time is not None:
                self._call.duration_seconds = (utcnow() - self._call.start_time).total_seconds()
            self._call.is_active = False
            await self._release()
            logger.info("session.ended", session=self.session_id, duration=round(self._call.duration_seconds, 2))
        await self._notify("system", {"event": "ended", "call": self._call_payload()})
        return self.get_call_state()

    async def accept_answer(self, answer: SessionDescription) -> None:
        """Forward a genuine remote answer to the running negotiation."""
        if self._state is not SessionState.NEGOTIATING:
            raise NegotiationError(f"cannot accept an answer in state {self._state.value}")
        await self._negotiator.accept_answer(answer)

    # ── Internals: lifecycle ──────────────────────────────────

    def _new_call(self, avatar_config: AvatarConfig | Mapping[str, Any] | None) -> None:
        if isinstance(avatar_config, Mapping):
            config = self._default_avatar.merged(avatar_config)
        else:
            config = avatar_config or self._default_avatar
        self._clear_resources()
        self._presence.reset()
        self._call = CallState(session_id=uuid.uuid4().hex, avatar_config=config)
        bind_session(self._call.session_id)

    def _set_state(self, state: SessionState) -> None:
        previous, self._state = self._state, state
        self._call.state = state
        logger.debug("session.state_changed", session=self.session_id, previous=previous.value, state=state.value)

    def _adopt(self, result: NegotiationResult) -> None:
        self._capture = result.capture
        self._transport = result.transport
        self._remote_tracks = list(result.remote_tracks)
        self._call.connection_type = result.mode
        self._call.is_active = True
        self._call.start_time = utcnow()
        self._set_state(SessionState.ACTIVE if result.mode is ConnectionMode.REAL else SessionState.DEGRADED)

    async def _start_processing(self) -> None:
        try:
            await self._tracker.start()
            self._tracker_started = True
        except Exception:
            logger.exception("session.tracker_start_failed")

        video: VideoSampler | None = None
        audio: AudioSampler | None = None
        capture = self._capture
        if capture is not None and capture.video_track is not None and self._tracker_started:
            video = VideoSampler(
                capture.video_track,
                self._tracker,
                self._queue,
                interval=self._video_interval,
                tracker_timeout=self._tracker_timeout,
                clock=self._clock,
            )
        if capture is not None and capture.audio_track is not None and self._analyzer_factory is not None:
            analyzer = self._analyzer_factory()
            try:
                await analyzer.open(capture.audio_track)
            except Exception as exc:
                logger.warning("session.audio_unavailable", error=str(exc))
                await self._close_analyzer(analyzer)
            else:
                self._analyzer = analyzer
                audio = AudioSampler(analyzer, interval=self._audio_interval, on_features=self._on_audio_features)

        self._pipeline = SamplingPipeline(video, audio)
        self._pipeline.start()
        self._render_loop = PeriodicTask("render", self._render_interval, self._render_once)
        self._render_loop.start()

    async def _release(self) -> None:
        render_loop, self._render_loop = self._render_loop, None
        if render_loop is not None:
            await render_loop.stop()
        pipeline, self._pipeline = self._pipeline, None
        if pipeline is not None:
            await pipeline.stop()
        analyzer, self._analyzer = self._analyzer, None
        if analyzer is not None:
            await self._close_analyzer(analyzer)
        if self._tracker_started:
            self._tracker_started = False
            try:
                await self._tracker.stop()
            except Exception:
                logger.exception("session.tracker_stop_failed")
        await self._release_result(
            NegotiationResult(
                self._call.connection_type or ConnectionMode.SIMULATED,
                capture=self._capture,
                transport=self._transport,
                remote_tracks=self._remote_tracks,
            )
        )
        self._capture = None
        self._transport = None
        self._remote_tracks = []
        self._speaking_until = None
        self._presence.set_speaking(False)

    @staticmethod
    async def _release_result(result: NegotiationResult) -> None:
        if result.capture is not None:
            result.capture.stop()
        for track in result.remote_tracks:
            if track.ended:
                continue
            try:
                track.stop()
            except Exception:
                logger.exception("session.track_stop_failed", track=track.id)
        if result.transport is not None:
            try:
                await result.transport.close()
            except Exception:
                logger.exception("session.transport_close_failed")

    @staticmethod
    async def _close_analyzer(analyzer: AudioAnalyzer) -> None:
        try:
            await analyzer.close()
        except Exception:
            logger.exception("session.analyzer_close_failed")

    # ── Render tick ───────────────────────────────────────────

    async def _render_once(self) -> None:
        await self.render_tick()

    async def render_tick(self) -> RenderParams:
        """Apply the newest queued sample, animate and render one frame."""
        now = self._wall_clock()
        sample = latest_sample(self._queue.drain(), self._applied)
        if sample is not None:
            self._applied = sample
            self._call.emotional_state = sample.state
            self._presence.respond_to(sample.state)
            await self._maybe_speak(sample.state)

        if self._speaking_until is not None:
            if self._clock() >= self._speaking_until:
                self._speaking_until = None
                self._presence.set_speaking(False)
            else:
                self._presence.update_lip_sync(abs(math.sin(now * 12.0)))

        self._presence.idle(self._rng, now)
        params = self._presence.render()
        self._last_render = params
        if sample is not None:
            await self._notify(
                "avatar",
                {
                    "emotion": sample.state.primary.value,
                    "avatar": self._presence.snapshot().model_dump(mode="json"),
                    "render": params.to_dict(),
                },
            )
        return params

    def _on_audio_features(self, features: LoudnessFeatures) -> None:
        self._call.user_engagement = 0.9 * self._call.user_engagement + 0.1 * features.level

    # ── Speech ────────────────────────────────────────────────

    async def _maybe_speak(self, state: EmotionalState) -> None:
        now = self._clock()
        if self._last_speech is not None and now - self._last_speech < self._speech_interval:
            return
        await self.speak(select_reply(state.primary, self._rng))

    async def speak(self, text: str) -> bool:
        """Have the avatar say *text*, updating its expression.  ``False`` on failure."""
        self._last_speech = self._clock()
        self._presence.express_text(text)
        request = build_speech_request(text, self._call.avatar_config)
        try:
            await self._speech.speak(request)
        except Exception:
            logger.exception("session.speech_failed")
            return False
        self._presence.set_speaking(True)
        self._speaking_until = self._last_speech + request.estimated_duration
        await self._notify("speech", request.to_dict())
        return True

    # ── Queries and updates ───────────────────────────────────

    def get_call_state(self) -> CallState:
        call = self._call.model_copy(deep=True)
        if call.is_active and call.start_time is not None:
            call.duration_seconds = (utcnow() - call.start_time).total_seconds()
        return call

    async def get_call_quality(self) -> CallQuality:
        try:
            return await measure_quality(self._transport)
        except Exception:
            logger.exception("session.stats_failed")
            return CallQuality()

    def avatar_snapshot(self) -> AvatarState:
        return self._presence.snapshot()

    async def update_avatar_config(self, update: Mapping[str, Any]) -> AvatarConfig:
        self._call.avatar_config = self._call.avatar_config.merged(update)
        if self._state in (SessionState.IDLE, SessionState.ENDED):
            self._default_avatar = self._call.avatar_config
        logger.info("session.avatar_updated", session=self.session_id, keys=sorted(update))
        await self._notify("avatar", {"config": self._call.avatar_config.model_dump(mode="json")})
        return self._call.avatar_config.model_copy(deep=True)

    def _set_tracks_enabled(self, kind: str, enabled: bool) -> None:
        if self._capture is None:
            return
        for track in self._capture.tracks:
            if track.kind == kind:
                track.enabled = enabled

    def toggle_audio(self, enabled: bool) -> bool:
        self._set_tracks_enabled("audio", enabled)
        self._call.audio_enabled = enabled
        return enabled

    def toggle_video(self, enabled: bool) -> bool:
        self._set_tracks_enabled("video", enabled)
        self._call.video_enabled = enabled
        return enabled

    # ── Listeners ─────────────────────────────────────────────

    def _call_payload(self) -> dict[str, Any]:
        return self.get_call_state().model_dump(mode="json")

    async def _notify(self, channel: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(channel, payload)
            except Exception:
                logger.exception("session.listener_failed", channel=channel)


def create_session_controller(settings: Settings | None = None) -> SessionController:
    """Wire a controller with the in-process simulated media stack."""
    settings = settings or get_settings()
    negotiator = MediaNegotiator(
        create_capture(settings),
        LoopbackTransport,
        constraints=CaptureConstraints.from_settings(settings),
        ice_servers=settings.ice_servers,
        capture_timeout=settings.capture_timeout_seconds,
        fallback_delay=settings.negotiation_fallback_delay_seconds,
        timeout=settings.negotiation_timeout_seconds,
    )
    return SessionController(
        negotiator,
        tracker=SimulatedEmotionTracker(),
        analyzer_factory=SimulatedAudioAnalyzer,
        speech=LogSpeechOutput(),
        settings=settings,
    )
