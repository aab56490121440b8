"""Tests for media negotiation and the live session controller."""

from __future__ import annotations

import asyncio
import random

import pytest

from companion_agent.avatar.speech import SpeechOutput
from companion_agent.emotion.tracker import SimulatedEmotionTracker
from companion_agent.errors import NegotiationError
from companion_agent.models import EmotionalState, EmotionLabel
from companion_agent.session.controller import SessionController, SessionState
from companion_agent.session.media import (
    CaptureConstraints,
    CaptureHandle,
    ConnectionState,
    MediaCapture,
    SessionDescription,
    StatsReport,
)
from companion_agent.session.negotiator import ConnectionMode, MediaNegotiator
from companion_agent.session.quality import CallQuality, quality_from_stats
from companion_agent.session.sampling import EmotionSample
from companion_agent.session.simulated import (
    DisabledCapture,
    LoopbackTransport,
    SimulatedAudioAnalyzer,
    SimulatedAudioTrack,
    SimulatedVideoTrack,
)

GENUINE_ANSWER = SessionDescription(type="answer", sdp="v=0 genuine")


# ── Fakes ─────────────────────────────────────────────────────


class CountingVideoTrack(SimulatedVideoTrack):
    def __init__(self) -> None:
        super().__init__()
        self.stops = 0

    def stop(self) -> None:
        self.stops += 1
        super().stop()


class CountingAudioTrack(SimulatedAudioTrack):
    def __init__(self) -> None:
        super().__init__()
        self.stops = 0

    def stop(self) -> None:
        self.stops += 1
        super().stop()


class CountingCapture(MediaCapture):
    def __init__(self) -> None:
        self.handles: list[CaptureHandle] = []
        self.tracks: list[CountingVideoTrack | CountingAudioTrack] = []

    async def acquire(self, constraints: CaptureConstraints) -> CaptureHandle:
        tracks = [CountingVideoTrack(), CountingAudioTrack()]
        self.tracks.extend(tracks)
        handle = CaptureHandle(list(tracks))
        self.handles.append(handle)
        return handle


class CountingTransport(LoopbackTransport):
    instances: list[CountingTransport] = []

    def __init__(self, ice_servers=None) -> None:
        super().__init__(ice_servers)
        self.closes = 0
        self.remote: list[CountingVideoTrack | CountingAudioTrack] = []
        CountingTransport.instances.append(self)

    def _connect(self) -> None:
        if self.connection_state is not ConnectionState.CONNECTING:
            return
        self.remote = [CountingVideoTrack(), CountingAudioTrack()]
        self._remote_tracks = list(self.remote)
        for track in self.remote:
            self._emit_track(track)
        self._set_state(ConnectionState.CONNECTED)

    async def close(self) -> None:
        self.closes += 1
        await super().close()


class SilentTransport(LoopbackTransport):
    """A peer that never answers: remote descriptions are accepted but never connect."""

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.remote_description = description


class RecordingSpeech(SpeechOutput):
    def __init__(self) -> None:
        self.requests = []

    async def speak(self, request) -> None:
        self.requests.append(request)


@pytest.fixture(autouse=True)
def _reset_transports():
    CountingTransport.instances = []
    yield


def _controller(
    settings,
    *,
    capture: MediaCapture | None = None,
    transport_factory=CountingTransport,
    fallback_delay: float | None = None,
    timeout: float | None = None,
    speech: SpeechOutput | None = None,
) -> SessionController:
    negotiator = MediaNegotiator(
        capture or CountingCapture(),
        transport_factory,
        capture_timeout=settings.capture_timeout_seconds,
        fallback_delay=settings.negotiation_fallback_delay_seconds if fallback_delay is None else fallback_delay,
        timeout=settings.negotiation_timeout_seconds if timeout is None else timeout,
    )
    return SessionController(
        negotiator,
        tracker=SimulatedEmotionTracker(random.Random(1)),
        analyzer_factory=SimulatedAudioAnalyzer,
        speech=speech or RecordingSpeech(),
        settings=settings,
        rng=random.Random(2),
    )


async def _wait_for_state(controller: SessionController, state: SessionState) -> None:
    for _ in range(200):
        if controller.state is state:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"controller never reached {state}")


async def _accept_when_ready(controller: SessionController, answer: SessionDescription) -> None:
    for _ in range(200):
        try:
            await controller.accept_answer(answer)
            return
        except NegotiationError:
            await asyncio.sleep(0.005)
    raise AssertionError("negotiation never became ready for an answer")


# ── Negotiator ────────────────────────────────────────────────


class TestMediaNegotiator:
    @pytest.mark.asyncio
    async def test_fallback_answer_yields_simulated(self):
        negotiator = MediaNegotiator(CountingCapture(), CountingTransport, fallback_delay=0.01, timeout=1)
        result = await negotiator.negotiate()
        assert result.mode is ConnectionMode.SIMULATED
        assert result.reason == "fallback_answer"
        assert result.transport.remote_description.sdp == "simulated-sdp-answer"
        assert len(result.remote_tracks) == 2
        await result.transport.close()

    @pytest.mark.asyncio
    async def test_acquisition_failure_is_simulated(self):
        negotiator = MediaNegotiator(DisabledCapture(), CountingTransport, fallback_delay=0.01)
        result = await negotiator.negotiate()
        assert result.mode is ConnectionMode.SIMULATED
        assert result.reason == "acquisition_failed"
        assert result.capture is None
        assert CountingTransport.instances == []

    @pytest.mark.asyncio
    async def test_unanswered_peer_times_out_before_fallback(self):
        capture = CountingCapture()
        negotiator = MediaNegotiator(capture, SilentTransport, fallback_delay=5, timeout=0.1)
        result = await negotiator.negotiate()
        assert result.mode is ConnectionMode.SIMULATED
        assert result.reason == "timeout"
        assert result.transport is None
        assert result.capture is capture.handles[0]
        assert not negotiator.fallback_pending

    @pytest.mark.asyncio
    async def test_fallback_settles_without_waiting_for_silent_peer(self):
        negotiator = MediaNegotiator(CountingCapture(), SilentTransport, fallback_delay=0.01, timeout=10)
        result = await asyncio.wait_for(negotiator.negotiate(), timeout=0.5)
        assert result.mode is ConnectionMode.SIMULATED
        assert result.reason == "fallback_answer"
        assert result.transport.remote_description.sdp == "simulated-sdp-answer"
        await result.transport.close()

    @pytest.mark.asyncio
    async def test_genuine_answer_cancels_fallback(self):
        negotiator = MediaNegotiator(CountingCapture(), CountingTransport, fallback_delay=5, timeout=1)
        task = asyncio.create_task(negotiator.negotiate())
        for _ in range(100):
            try:
                await negotiator.accept_answer(GENUINE_ANSWER)
                break
            except NegotiationError:
                await asyncio.sleep(0.005)
        result = await task
        assert result.mode is ConnectionMode.REAL
        assert result.reason == "connected"
        assert not negotiator.fallback_pending
        assert result.transport.remote_description == GENUINE_ANSWER
        await result.transport.close()

    @pytest.mark.asyncio
    async def test_answer_without_negotiation_rejected(self):
        negotiator = MediaNegotiator(CountingCapture(), CountingTransport)
        with pytest.raises(NegotiationError):
            await negotiator.accept_answer(GENUINE_ANSWER)

    def test_session_description_round_trip(self):
        assert SessionDescription.from_dict(GENUINE_ANSWER.to_dict()) == GENUINE_ANSWER
        assert SessionDescription.from_dict({"sdp": "x"}).type == "answer"


# ── Controller lifecycle ──────────────────────────────────────


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_start_without_peer_degrades_within_fallback_window(self, fast_settings):
        controller = _controller(fast_settings)
        call = await asyncio.wait_for(controller.start(), timeout=1.0)
        assert call.state is SessionState.DEGRADED
        assert call.is_active
        assert call.connection_type is ConnectionMode.SIMULATED
        assert controller.pipeline is not None and controller.pipeline.running
        await controller.end()

    @pytest.mark.asyncio
    async def test_start_with_silent_peer_degrades_within_fallback_window(self, fast_settings):
        controller = _controller(fast_settings, transport_factory=SilentTransport, timeout=10.0)
        window = fast_settings.negotiation_fallback_delay_seconds * 4
        call = await asyncio.wait_for(controller.start(), timeout=window)
        assert call.state is SessionState.DEGRADED
        assert call.connection_type is ConnectionMode.SIMULATED
        await controller.end()
        assert controller.state is SessionState.ENDED

    @pytest.mark.asyncio
    async def test_start_without_devices_degrades(self, fast_settings):
        controller = _controller(fast_settings, capture=DisabledCapture())
        call = await controller.start()
        assert call.state is SessionState.DEGRADED
        assert controller.pipeline is not None
        await controller.end()

    @pytest.mark.asyncio
    async def test_genuine_answer_makes_session_active(self, fast_settings):
        controller = _controller(fast_settings, fallback_delay=5)
        start = asyncio.create_task(controller.start())
        await _accept_when_ready(controller, GENUINE_ANSWER)
        call = await asyncio.wait_for(start, timeout=1.0)
        assert call.state is SessionState.ACTIVE
        assert call.connection_type is ConnectionMode.REAL
        await asyncio.sleep(0.05)
        assert controller.state is SessionState.ACTIVE
        await controller.end()

    @pytest.mark.asyncio
    async def test_answer_rejected_when_not_negotiating(self, fast_settings):
        controller = _controller(fast_settings)
        with pytest.raises(NegotiationError):
            await controller.accept_answer(GENUINE_ANSWER)

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, fast_settings):
        controller = _controller(fast_settings)
        first = await controller.start()
        second = await controller.start()
        assert second.session_id == first.session_id
        assert len(CountingTransport.instances) == 1
        await controller.end()

    @pytest.mark.asyncio
    async def test_restart_gets_new_session_id(self, fast_settings):
        controller = _controller(fast_settings)
        first = await controller.start()
        await controller.end()
        second = await controller.start()
        assert second.session_id != first.session_id
        assert second.state is SessionState.DEGRADED
        await controller.end()


class TestSessionEnd:
    @pytest.mark.asyncio
    async def test_end_on_idle_is_noop(self, fast_settings):
        controller = _controller(fast_settings)
        call = await controller.end()
        assert call.state is SessionState.IDLE
        await controller.end()
        assert controller.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_end_twice_releases_once(self, fast_settings):
        capture = CountingCapture()
        controller = _controller(fast_settings, capture=capture)
        await controller.start()
        await asyncio.sleep(0.05)
        pipeline = controller.pipeline

        first = await controller.end()
        second = await controller.end()

        assert first.state is SessionState.ENDED
        assert second.state is SessionState.ENDED
        assert not first.is_active
        assert all(track.stops == 1 for track in capture.tracks)
        [transport] = CountingTransport.instances
        assert transport.closes == 1
        assert all(track.stops == 1 for track in transport.remote)
        assert not pipeline.running
        assert controller.pipeline is None

    @pytest.mark.asyncio
    async def test_concurrent_end_releases_once(self, fast_settings):
        capture = CountingCapture()
        controller = _controller(fast_settings, capture=capture)
        await controller.start()
        await asyncio.gather(controller.end(), controller.end(), controller.end())
        assert all(track.stops == 1 for track in capture.tracks)
        assert CountingTransport.instances[0].closes == 1

    @pytest.mark.asyncio
    async def test_end_during_negotiation(self, fast_settings):
        capture = CountingCapture()
        controller = _controller(fast_settings, capture=capture, fallback_delay=5, timeout=5)
        start = asyncio.create_task(controller.start())
        await _wait_for_state(controller, SessionState.NEGOTIATING)
        await asyncio.sleep(0.02)

        await controller.end()
        call = await asyncio.wait_for(start, timeout=1.0)

        assert call.state is SessionState.ENDED
        assert controller.state is SessionState.ENDED
        assert all(track.stops == 1 for track in capture.tracks)
        assert all(t.closes == 1 for t in CountingTransport.instances)
        await controller.end()
        assert all(track.stops == 1 for track in capture.tracks)

    @pytest.mark.asyncio
    async def test_listeners_see_start_and_end(self, fast_settings):
        controller = _controller(fast_settings)
        events: list[tuple[str, dict]] = []

        async def listener(channel, payload):
            events.append((channel, payload))

        remove = controller.on_update(listener)
        await controller.start()
        await controller.end()
        remove()
        system = [p["event"] for c, p in events if c == "system"]
        assert system == ["started", "ended"]

    @pytest.mark.asyncio
    async def test_end_from_avatar_listener_releases_everything(self, fast_settings):
        capture = CountingCapture()
        controller = _controller(fast_settings, capture=capture)
        ended: list[str] = []

        async def hang_up_on_first_expression(channel, payload):
            if channel == "avatar" and "emotion" in payload and not ended:
                call = await controller.end()
                ended.append(call.state.value)

        controller.on_update(hang_up_on_first_expression)
        await controller.start()
        pipeline = controller.pipeline
        await _wait_for_state(controller, SessionState.ENDED)
        await asyncio.sleep(0.05)

        assert ended == ["ended"]
        assert all(track.stops == 1 for track in capture.tracks)
        [transport] = CountingTransport.instances
        assert transport.closes == 1
        assert not pipeline.running
        call = await asyncio.wait_for(controller.end(), timeout=0.5)
        assert call.state is SessionState.ENDED


# ── Render tick, speech and media ─────────────────────────────


class TestRenderTick:
    @pytest.mark.asyncio
    async def test_newest_sample_is_applied(self, fast_settings):
        speech = RecordingSpeech()
        controller = _controller(fast_settings, speech=speech)
        queue = controller.sample_queue
        queue.push(EmotionSample(2.0, "video", EmotionalState(primary="sadness", intensity=0.9)))
        queue.push(EmotionSample(1.0, "video", EmotionalState(primary="joy", intensity=0.9)))

        params = await controller.render_tick()

        call = controller.get_call_state()
        assert call.emotional_state.primary is EmotionLabel.SADNESS
        assert controller.last_render == params
        assert len(speech.requests) == 1
        assert controller.avatar_snapshot().speaking

    @pytest.mark.asyncio
    async def test_stale_sample_ignored(self, fast_settings):
        controller = _controller(fast_settings)
        controller.sample_queue.push(EmotionSample(5.0, "video", EmotionalState(primary="joy")))
        await controller.render_tick()
        controller.sample_queue.push(EmotionSample(4.0, "video", EmotionalState(primary="fear")))
        await controller.render_tick()
        assert controller.get_call_state().emotional_state.primary is EmotionLabel.JOY

    @pytest.mark.asyncio
    async def test_speech_is_rate_limited(self, fast_settings):
        speech = RecordingSpeech()
        controller = _controller(fast_settings, speech=speech)
        for at in (1.0, 2.0, 3.0):
            controller.sample_queue.push(EmotionSample(at, "video", EmotionalState(primary="joy")))
            await controller.render_tick()
        assert len(speech.requests) == 1

    @pytest.mark.asyncio
    async def test_speak_uses_avatar_voice(self, fast_settings):
        speech = RecordingSpeech()
        controller = _controller(fast_settings, speech=speech)
        await controller.update_avatar_config({"voice": {"pitch": 1.5, "speed": 2.0}})
        assert await controller.speak("That's wonderful news!")
        [request] = speech.requests
        assert (request.pitch, request.rate) == (1.5, 2.0)
        assert controller.avatar_snapshot().emotion.joy == 0.8

    @pytest.mark.asyncio
    async def test_render_loop_runs_while_live(self, fast_settings):
        controller = _controller(fast_settings)
        await controller.start()
        await asyncio.sleep(0.1)
        assert controller.last_render is not None
        await controller.end()


class TestMediaControls:
    @pytest.mark.asyncio
    async def test_toggle_disables_local_tracks(self, fast_settings):
        capture = CountingCapture()
        controller = _controller(fast_settings, capture=capture)
        await controller.start()
        controller.toggle_video(False)
        video = next(t for t in capture.tracks if t.kind == "video")
        audio = next(t for t in capture.tracks if t.kind == "audio")
        assert video.enabled is False
        assert audio.enabled is True
        assert controller.get_call_state().video_enabled is False
        await controller.end()

    @pytest.mark.asyncio
    async def test_avatar_config_update_validated(self, fast_settings):
        controller = _controller(fast_settings)
        config = await controller.update_avatar_config({"name": "Riley"})
        assert config.name == "Riley"
        with pytest.raises(ValueError):
            await controller.update_avatar_config({"voice": {"speed": 0}})


class TestCallQuality:
    def test_defaults_without_reports(self):
        assert quality_from_stats([]) == CallQuality()

    def test_packet_loss_lowers_quality(self):
        quality = quality_from_stats(
            [
                StatsReport(type="inbound-rtp", kind="video", packets_lost=10, packets_received=100),
                StatsReport(type="inbound-rtp", kind="audio", packets_lost=0, packets_received=100),
                StatsReport(type="candidate-pair", state="succeeded"),
            ]
        )
        assert quality.video_quality == pytest.approx(0.9)
        assert quality.audio_quality == pytest.approx(1.0)
        assert quality.connection_quality == pytest.approx(0.9)
        assert quality.overall_quality == pytest.approx((0.9 + 1.0 + 0.9) / 3)

    @pytest.mark.asyncio
    async def test_idle_session_reports_defaults(self, fast_settings):
        controller = _controller(fast_settings)
        assert await controller.get_call_quality() == CallQuality()

    @pytest.mark.asyncio
    async def test_live_session_reports_transport_stats(self, fast_settings):
        controller = _controller(fast_settings)
        await controller.start()
        quality = await controller.get_call_quality()
        assert quality.connection_quality == pytest.approx(0.9)
        assert 0.0 <= quality.overall_quality <= 1.0
        await controller.end()
