"""Sampling pipeline — periodic video and audio analysis during a call.

Architecture
~~~~~~~~~~~~
* **PeriodicTask** — fixed-cadence background loop with explicit
  start/stop.  A failing tick is logged and the schedule continues.
* **VideoSampler** — grabs a frame every tick, runs the emotion tracker
  and appends an :class:`EmotionSample` to the session's
  :class:`SampleQueue`.  Ticks may overlap: each one runs as its own task.
* **AudioSampler** — reads frequency bins every tick and derives
  :class:`LoudnessFeatures`.
* **SamplingPipeline** — starts/stops both samplers together.

The samplers never touch session state.  The session's render tick drains
the queue and applies the sample with the newest *capture* time (see
:func:`latest_sample`), so a slow tick can never overwrite a newer result.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from companion_agent.emotion.tracker import EmotionTracker
from companion_agent.errors import SamplingError
from companion_agent.models import EmotionalState
from companion_agent.session.media import AudioAnalyzer, VideoTrack, to_pixel_buffer

logger = structlog.get_logger(__name__)

Tick = Callable[[], Awaitable[None]]


# ── Samples ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class EmotionSample:
    captured_at: float  # monotonic seconds
    source: str
    state: EmotionalState


class SampleQueue:
    """Bounded append-only buffer; the oldest samples drop when full."""

    def __init__(self, maxsize: int = 64) -> None:
        self._items: deque[EmotionSample] = deque(maxlen=maxsize)
        self.dropped = 0

    def push(self, sample: EmotionSample) -> None:
        if len(self._items) == self._items.maxlen:
            self.dropped += 1
        self._items.append(sample)

    def drain(self) -> list[EmotionSample]:
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)


def latest_sample(
    samples: Sequence[EmotionSample],
    current: EmotionSample | None = None,
) -> EmotionSample | None:
    """Return the newest sample by capture time, or ``None``.

    Samples captured before *current* are stale and never win.
    """
    if not samples:
        return None
    newest = max(samples, key=lambda s: s.captured_at)
    if current is not None and newest.captured_at <= current.captured_at:
        return None
    return newest


# ── Loudness ──────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class LoudnessFeatures:
    average: float  # mean bin energy, 0..255
    peak: int
    rms: float
    level: float  # rms normalised into [0, 1]


def loudness_features(bins: Sequence[int]) -> LoudnessFeatures:
    if not bins:
        return LoudnessFeatures(average=0.0, peak=0, rms=0.0, level=0.0)
    count = len(bins)
    average = sum(bins) / count
    rms = math.sqrt(sum(b * b for b in bins) / count)
    return LoudnessFeatures(
        average=average,
        peak=max(bins),
        rms=rms,
        level=min(1.0, rms / 255),
    )


# ── Periodic task ─────────────────────────────────────────────


class PeriodicTask:
    """Run *tick* every *interval* seconds until :meth:`stop`.

    The schedule is anchored to the start time, so slow ticks do not
    accumulate drift.  With ``overlap=True`` every tick is spawned as its
    own task and the next one fires on time even if the previous is still
    running; otherwise ticks run inline and a late tick skips ahead.
    """

    def __init__(self, name: str, interval: float, tick: Tick, *, overlap: bool = False) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._overlap = overlap
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.debug("sampling.loop_started", loop=self.name, interval=self.interval)

    async def stop(self) -> None:
        """Cancel the loop and any in-flight ticks.

        May be called from inside a tick: the calling task is left to finish
        and the loop exits once that tick returns.
        """
        task, self._task = self._task, None
        current = asyncio.current_task()
        pending = [t for t in (task, *self._inflight) if t is not None and t is not current and not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()
        if task is not None:
            logger.debug("sampling.loop_stopped", loop=self.name, ticks=self.ticks, failures=self.failures)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        next_at = loop.time()
        while self._task is me:
            if self._overlap:
                t = asyncio.create_task(self._guarded())
                self._inflight.add(t)
                t.add_done_callback(self._inflight.discard)
            else:
                await self._guarded()
                if self._task is not me:
                    return
            next_at += self.interval
            now = loop.time()
            if next_at < now and not self._overlap:
                next_at = now
            await asyncio.sleep(max(0.0, next_at - now))

    async def _guarded(self) -> None:
        self.ticks += 1
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            logger.warning("sampling.tick_failed", loop=self.name, error=str(exc) or type(exc).__name__)


# ── Samplers ──────────────────────────────────────────────────


class VideoSampler:
    def __init__(
        self,
        track: VideoTrack,
        tracker: EmotionTracker,
        queue: SampleQueue,
        *,
        interval: float = 0.033,
        tracker_timeout: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._track = track
        self._tracker = tracker
        self._queue = queue
        self._tracker_timeout = tracker_timeout
        self._clock = clock
        self.loop = PeriodicTask("video", interval, self.sample_once, overlap=True)

    async def sample_once(self) -> None:
        captured_at = self._clock()
        try:
            frame = await asyncio.wait_for(self._track.grab_frame(), timeout=self._tracker_timeout)
            buffer = to_pixel_buffer(frame)
        except TimeoutError as exc:
            raise SamplingError("frame grab timed out") from exc
        except Exception as exc:
            raise SamplingError(f"frame grab failed: {exc}") from exc
        try:
            state = await asyncio.wait_for(
                self._tracker.analyze_frame(buffer), timeout=self._tracker_timeout,
            )
        except TimeoutError as exc:
            raise SamplingError("emotion tracker timed out") from exc
        except Exception as exc:
            raise SamplingError(f"emotion tracker failed: {exc}") from exc
        self._queue.push(EmotionSample(captured_at, "video", state))


class AudioSampler:
    def __init__(
        self,
        analyzer: AudioAnalyzer,
        *,
        interval: float = 0.016,
        on_features: Callable[[LoudnessFeatures], None] | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._on_features = on_features
        self.latest: LoudnessFeatures | None = None
        self.loop = PeriodicTask("audio", interval, self.sample_once)

    @property
    def processing(self) -> bool:
        return self.loop.running

    async def sample_once(self) -> None:
        try:
            bins = self._analyzer.frequency_data()
        except Exception as exc:
            raise SamplingError(f"audio analysis failed: {exc}") from exc
        features = loudness_features(bins)
        self.latest = features
        logger.debug("sampling.audio_features", average=round(features.average, 2), level=round(features.level, 3))
        if self._on_features is not None:
            self._on_features(features)


class SamplingPipeline:
    """Owns the video and audio samplers of one session."""

    def __init__(self, video: VideoSampler | None = None, audio: AudioSampler | None = None) -> None:
        self.video = video
        self.audio = audio

    @property
    def running(self) -> bool:
        return any(s is not None and s.loop.running for s in (self.video, self.audio))

    def start(self) -> None:
        for sampler in (self.video, self.audio):
            if sampler is not None:
                sampler.loop.start()
        logger.info("sampling.started", video=self.video is not None, audio=self.audio is not None)

    async def stop(self) -> None:
        was_running = self.running
        for sampler in (self.video, self.audio):
            if sampler is not None:
                await sampler.loop.stop()
        if was_running:
            logger.info("sampling.stopped")
