"""Emotion fusion — turn user input into a normalised :class:`EmotionalState`.

The production system treats fusion as an external collaborator; this
module defines its contract (:class:`EmotionFusion`) and ships a small
keyword-based implementation so the conductor works out of the box.

Fusion rules (applied in order, later modalities override the label only
when they are more confident):

1. **Text** — keyword counts per basic emotion, collapsed into a
   positive / negative / neutral sentiment.  Sets label, intensity and
   valence.
2. **Voice** — loudness features from the audio sampler.  Averages into
   intensity and sets arousal.
3. **Face** — per-expression scores from a face model.  Averages the
   strongest expression into intensity.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping

import structlog

from companion_agent.models import EmotionalState, EmotionLabel, Modality, clamp01

logger = structlog.get_logger(__name__)

_WORD_RE = re.compile(r"[a-z']+")

EMOTION_KEYWORDS: dict[str, frozenset[str]] = {
    "joy": frozenset({"happy", "joy", "excited", "thrilled", "delighted", "pleased", "cheerful"}),
    "sadness": frozenset({"sad", "depressed", "melancholy", "grief", "sorrow", "unhappy", "miserable"}),
    "anger": frozenset({"angry", "furious", "irritated", "annoyed", "mad", "rage", "frustrated"}),
    "fear": frozenset({"afraid", "scared", "terrified", "anxious", "worried", "nervous", "panicked"}),
    "surprise": frozenset({"surprised", "shocked", "amazed", "astonished", "stunned", "bewildered"}),
    "disgust": frozenset({"disgusted", "revolted", "repulsed", "sickened", "appalled"}),
    "trust": frozenset({"trust", "confident", "secure", "reliable", "faithful", "loyal"}),
    "anticipation": frozenset({"excited", "eager", "hopeful", "optimistic", "enthusiastic"}),
}

_POSITIVE = ("joy", "trust", "anticipation")
_NEGATIVE = ("sadness", "anger", "fear", "disgust")


# ── Per-modality evidence ─────────────────────────────────────


@dataclass(frozen=True, slots=True)
class TextSentiment:
    sentiment: str  # positive | negative | neutral
    confidence: float
    intensity: float
    emotions: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VoiceEvidence:
    """Loudness-derived voice evidence (see :func:`loudness_features`)."""

    level: float  # normalised loudness in [0, 1]
    confidence: float = 0.6


def analyze_text_sentiment(text: str) -> TextSentiment:
    """Score *text* against :data:`EMOTION_KEYWORDS`."""
    words = _WORD_RE.findall(text.lower())
    counts = {emotion: 0 for emotion in EMOTION_KEYWORDS}
    total = 0
    for word in words:
        for emotion, keywords in EMOTION_KEYWORDS.items():
            if word in keywords:
                counts[emotion] += 1
                total += 1

    peak = max(counts.values())
    emotions = {e: (c / peak if peak else 0.0) for e, c in counts.items()}

    positive = sum(emotions[e] for e in _POSITIVE)
    negative = sum(emotions[e] for e in _NEGATIVE)
    if positive > negative + 0.2:
        sentiment, confidence = "positive", positive / (positive + negative)
    elif negative > positive + 0.2:
        sentiment, confidence = "negative", negative / (positive + negative)
    else:
        sentiment, confidence = "neutral", 0.5

    intensity = total / len(words) if words else 0.0
    return TextSentiment(
        sentiment=sentiment,
        confidence=clamp01(confidence),
        intensity=clamp01(intensity),
        emotions=emotions,
    )


def dominant_text_emotion(sentiment: TextSentiment) -> EmotionLabel:
    """Pick the strongest basic emotion behind a non-neutral sentiment."""
    if sentiment.sentiment == "neutral":
        return EmotionLabel.NEUTRAL
    candidates = _POSITIVE if sentiment.sentiment == "positive" else _NEGATIVE
    best = max(candidates, key=lambda e: sentiment.emotions.get(e, 0.0))
    if best in ("trust", "anticipation"):
        return EmotionLabel.JOY
    return EmotionLabel.coerce(best)


# ── Contract ──────────────────────────────────────────────────


class EmotionFusion(ABC):
    """Produce a normalised affect estimate for one user input."""

    @abstractmethod
    async def analyze(
        self,
        text: str,
        modality: Modality = Modality.TEXT,
        *,
        voice: VoiceEvidence | None = None,
        face: Mapping[str, float] | None = None,
    ) -> EmotionalState:
        """Return a fresh :class:`EmotionalState` for *text*."""


class KeywordEmotionFusion(EmotionFusion):
    """Keyword text sentiment fused with optional voice and face evidence."""

    async def analyze(
        self,
        text: str,
        modality: Modality = Modality.TEXT,
        *,
        voice: VoiceEvidence | None = None,
        face: Mapping[str, float] | None = None,
    ) -> EmotionalState:
        modality = Modality(modality)
        label = EmotionLabel.NEUTRAL
        intensity = valence = arousal = confidence = 0.5

        if modality in (Modality.TEXT, Modality.MULTIMODAL):
            sentiment = analyze_text_sentiment(text)
            label = dominant_text_emotion(sentiment)
            intensity = sentiment.intensity
            valence = {"positive": 0.8, "negative": 0.2}.get(sentiment.sentiment, 0.5)
            confidence = max(confidence, sentiment.confidence)

        if voice is not None and modality in (Modality.VOICE, Modality.MULTIMODAL):
            intensity = (intensity + voice.level) / 2
            arousal = voice.level
            if voice.confidence > confidence:
                confidence = voice.confidence

        if face and modality in (Modality.VIDEO, Modality.MULTIMODAL):
            expression, strength = max(face.items(), key=lambda kv: kv[1])
            if _FACE_CONFIDENCE > confidence:
                label = EmotionLabel.coerce(_FACE_TO_LABEL.get(expression, expression))
                confidence = _FACE_CONFIDENCE
            intensity = (intensity + clamp01(strength)) / 2

        state = EmotionalState(
            primary=label,
            intensity=intensity,
            valence=valence,
            arousal=arousal,
            confidence=confidence,
        )
        logger.debug(
            "emotion_fusion.analyzed",
            modality=modality.value,
            primary=state.primary.value,
            intensity=round(state.intensity, 3),
            valence=state.valence,
        )
        return state


_FACE_CONFIDENCE = 0.85

_FACE_TO_LABEL = {
    "happiness": "joy",
    "sadness": "sadness",
    "anger": "anger",
    "fear": "fear",
    "surprise": "surprise",
    "disgust": "disgust",
    "contempt": "disgust",
    "neutral": "neutral",
}
