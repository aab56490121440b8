"""Avatar expression mapping — emotion vectors, gestures and render parameters.

:func:`render` is pure: it maps one :class:`AvatarState` to the transform
values a renderer applies (head rotation, eyebrow height, mouth and eye
scale, head colour).  :class:`AvatarPresence` owns the mutable state that
the session's render tick feeds into it.
"""

from __future__ import annotations

import math
import random
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from companion_agent.avatar.models import AvatarEmotion, AvatarGesture, AvatarState
from companion_agent.models import EmotionalState, EmotionLabel, clamp01

logger = structlog.get_logger(__name__)

# Tie-break order for equal channel values.
EMOTION_PRIORITY = ("joy", "empathy", "concern", "curiosity", "neutral")

HEAD_COLOURS = {
    "joy": "#ffdbac",
    "empathy": "#ffe4b5",
    "concern": "#f5d0c5",
    "curiosity": "#fff0db",
}
DEFAULT_HEAD_COLOUR = "#ffdbac"


@dataclass(frozen=True, slots=True)
class RenderParams:
    head_rotation_x: float
    head_rotation_y: float
    eyebrow_y: float
    mouth_scale_y: float
    eye_scale_y: float
    head_color: str
    dominant_emotion: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def dominant_emotion(emotion: AvatarEmotion) -> str:
    """Name of the strongest channel; earlier :data:`EMOTION_PRIORITY` wins ties."""
    return max(EMOTION_PRIORITY, key=lambda name: getattr(emotion, name))


def render(state: AvatarState) -> RenderParams:
    gesture = state.gesture
    if state.speaking:
        mouth = 1 + state.lip_sync * 0.5
    else:
        mouth = 1 + gesture.smile * 0.3
    dominant = dominant_emotion(state.emotion)
    return RenderParams(
        head_rotation_x=gesture.head_nod * 0.2,
        head_rotation_y=gesture.head_tilt * 0.3,
        eyebrow_y=0.4 + gesture.eyebrow_raise * 0.1,
        mouth_scale_y=mouth,
        eye_scale_y=0.1 if gesture.blink else 1.0,
        head_color=HEAD_COLOURS.get(dominant, DEFAULT_HEAD_COLOUR),
        dominant_emotion=dominant,
    )


def generate_gesture(rng: random.Random, now: float) -> AvatarGesture:
    """Idle micro-movements; *now* is wall-clock seconds."""
    return AvatarGesture(
        head_tilt=(rng.random() - 0.5) * 0.3,
        head_nod=math.sin(now * 1.0) * 0.1,
        eyebrow_raise=0.5 if rng.random() > 0.95 else 0.0,
        blink=rng.random() > 0.98,
        smile=0.2 + math.sin(now * 2.0) * 0.1,
    )


def emotion_vector_for(state: EmotionalState) -> AvatarEmotion:
    """How the avatar should respond to the user's emotional state."""
    i = state.intensity
    joy = empathy = concern = curiosity = 0.0
    neutral = 1 - i
    label = state.primary
    if label is EmotionLabel.JOY:
        joy, curiosity = i, 0.2
    elif label is EmotionLabel.SADNESS:
        empathy, concern = i, i * 0.6
    elif label is EmotionLabel.FEAR:
        empathy, concern = i * 0.8, i
    elif label is EmotionLabel.ANGER:
        concern, empathy = i, i * 0.5
    elif label is EmotionLabel.DISGUST:
        concern = i * 0.7
    elif label is EmotionLabel.SURPRISE:
        curiosity, joy = i, i * 0.3
    else:
        neutral, curiosity = max(neutral, 0.5), 0.2
    return AvatarEmotion(joy=joy, empathy=empathy, concern=concern, curiosity=curiosity, neutral=neutral)


def analyze_sentiment(text: str) -> AvatarEmotion:
    """Keyword heuristic for the avatar's own reply text."""
    lowered = text.lower()
    joy, empathy, concern, curiosity, neutral = 0.3, 0.5, 0.0, 0.2, 0.8
    if any(w in lowered for w in ("great", "wonderful", "amazing")):
        joy, neutral = 0.8, 0.3
    if any(w in lowered for w in ("understand", "feel", "sorry")):
        empathy, neutral = 0.8, 0.4
    if any(w in lowered for w in ("worried", "concerned", "difficult")):
        concern, neutral = 0.7, 0.3
    if any(w in lowered for w in ("tell me", "how", "what")):
        curiosity, neutral = 0.7, 0.4
    return AvatarEmotion(joy=joy, empathy=empathy, concern=concern, curiosity=curiosity, neutral=neutral)


class AvatarPresence:
    """Owner of one avatar's live :class:`AvatarState`.

    Partial updates merge into the current state; readers get copies.
    """

    def __init__(self, state: AvatarState | None = None) -> None:
        self._state = state or AvatarState()

    def snapshot(self) -> AvatarState:
        return self._state.model_copy(deep=True)

    def reset(self) -> None:
        self._state = AvatarState()

    def update_emotion(self, emotion: Mapping[str, Any] | AvatarEmotion) -> None:
        if isinstance(emotion, AvatarEmotion):
            emotion = emotion.model_dump()
        data = self._state.emotion.model_dump()
        data.update({k: v for k, v in emotion.items() if k in AvatarEmotion.model_fields})
        self._state = self._state.model_copy(update={"emotion": AvatarEmotion.model_validate(data)})

    def update_gesture(self, gesture: Mapping[str, Any] | AvatarGesture) -> None:
        if isinstance(gesture, AvatarGesture):
            gesture = gesture.model_dump()
        data = self._state.gesture.model_dump()
        data.update({k: v for k, v in gesture.items() if k in AvatarGesture.model_fields})
        self._state = self._state.model_copy(update={"gesture": AvatarGesture.model_validate(data)})

    def set_speaking(self, speaking: bool) -> None:
        update: dict[str, Any] = {"speaking": speaking}
        if not speaking:
            update["lip_sync"] = 0.0
        self._state = self._state.model_copy(update=update)

    def update_lip_sync(self, intensity: float) -> None:
        self._state = self._state.model_copy(update={"lip_sync": clamp01(intensity)})

    def respond_to(self, state: EmotionalState) -> None:
        self.update_emotion(emotion_vector_for(state))

    def express_text(self, text: str) -> None:
        self.update_emotion(analyze_sentiment(text))

    def idle(self, rng: random.Random, now: float) -> None:
        self.update_gesture(generate_gesture(rng, now))

    def render(self) -> RenderParams:
        return render(self._state)
