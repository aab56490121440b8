"""Per-frame emotion tracking used by the video sampling loop."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from companion_agent.models import EmotionalState, EmotionLabel

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PixelBuffer:
    """An analysable RGBA frame: ``width * height * 4`` bytes."""

    width: int
    height: int
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != self.width * self.height * 4:
            raise ValueError(
                f"RGBA buffer of {self.width}x{self.height} needs "
                f"{self.width * self.height * 4} bytes, got {len(self.data)}"
            )

    @property
    def mean_luma(self) -> float:
        """Average brightness in ``[0, 1]`` (cheap frame sanity metric)."""
        if not self.data:
            return 0.0
        total = 0
        pixels = len(self.data) // 4
        for i in range(0, len(self.data), 4):
            r, g, b = self.data[i], self.data[i + 1], self.data[i + 2]
            total += (299 * r + 587 * g + 114 * b) // 1000
        return total / (pixels * 255)


class EmotionTracker(ABC):
    """Contract for face/frame emotion recognisers."""

    async def start(self) -> None:
        """Prepare the tracker (load models, warm up)."""

    async def stop(self) -> None:
        """Release anything :meth:`start` acquired."""

    @abstractmethod
    async def analyze_frame(self, frame: PixelBuffer) -> EmotionalState:
        """Return a fresh :class:`EmotionalState` sample for *frame*."""


class SimulatedEmotionTracker(EmotionTracker):
    """Random but well-formed samples, for running without a vision model."""

    _LABELS = (
        EmotionLabel.JOY,
        EmotionLabel.SADNESS,
        EmotionLabel.ANGER,
        EmotionLabel.FEAR,
        EmotionLabel.SURPRISE,
        EmotionLabel.NEUTRAL,
    )

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._tracking = False

    @property
    def tracking(self) -> bool:
        return self._tracking

    async def start(self) -> None:
        self._tracking = True
        logger.info("emotion_tracker.started", kind="simulated")

    async def stop(self) -> None:
        self._tracking = False
        logger.info("emotion_tracker.stopped", kind="simulated")

    async def analyze_frame(self, frame: PixelBuffer) -> EmotionalState:
        rng = self._rng
        return EmotionalState(
            primary=rng.choice(self._LABELS),
            intensity=rng.random(),
            valence=rng.random(),
            arousal=rng.random(),
            confidence=0.8 + rng.random() * 0.2,
        )
