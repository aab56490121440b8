"""Avatar speech — emotion-keyed replies, voice selection and output."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from companion_agent.avatar.models import AvatarConfig
from companion_agent.models import EmotionLabel

logger = structlog.get_logger(__name__)

_NEUTRAL_REPLIES = (
    "How are you feeling today?",
    "What's on your mind?",
    "I'm here to chat whenever you're ready.",
)

RESPONSE_BANK: dict[EmotionLabel, tuple[str, ...]] = {
    EmotionLabel.JOY: (
        "I'm so glad to see you're feeling happy! What's bringing you joy today?",
        "Your positive energy is contagious! Tell me more about what's going well.",
        "It's wonderful to see you in such good spirits!",
    ),
    EmotionLabel.SADNESS: (
        "I can see you're feeling down. I'm here to listen if you'd like to talk about it.",
        "It's okay to feel sad sometimes. Would you like to share what's on your mind?",
        "I'm here for you. Sometimes talking about our feelings can help.",
    ),
    EmotionLabel.ANGER: (
        "I can sense you're frustrated. What's been bothering you?",
        "It's natural to feel angry sometimes. Would you like to talk about what happened?",
        "I'm here to listen. Sometimes venting can help us feel better.",
    ),
    EmotionLabel.FEAR: (
        "I can see you're feeling anxious. What's worrying you?",
        "It's okay to feel scared. I'm here to support you through this.",
        "Let's talk about what's making you feel afraid. You're not alone.",
    ),
    EmotionLabel.NEUTRAL: _NEUTRAL_REPLIES,
}


def replies_for(label: EmotionLabel | str) -> tuple[str, ...]:
    """Sentences for *label*; labels without their own fall back to neutral."""
    return RESPONSE_BANK.get(EmotionLabel.coerce(label), _NEUTRAL_REPLIES)


def select_reply(label: EmotionLabel | str, rng: random.Random | None = None) -> str:
    return (rng or random).choice(replies_for(label))


# ── Voice ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Voice:
    name: str
    lang: str


DEFAULT_VOICES: tuple[Voice, ...] = (
    Voice("en-US neutral", "en-US"),
    Voice("en-GB female", "en-GB"),
    Voice("en-US male", "en-US"),
    Voice("es-ES female", "es-ES"),
    Voice("de-DE male", "de-DE"),
)


def select_voice(voices: tuple[Voice, ...] | list[Voice], config: AvatarConfig) -> Voice | None:
    """First voice matching the language prefix and gender, else the first voice."""
    language = config.voice.language or "en"
    gender = config.appearance.gender
    for voice in voices:
        if voice.lang.startswith(language) and (gender == "neutral" or gender in voice.name.lower().split()):
            return voice
    return voices[0] if voices else None


@dataclass(frozen=True, slots=True)
class SpeechRequest:
    text: str
    pitch: float
    rate: float
    voice: str | None = None

    @property
    def estimated_duration(self) -> float:
        """Rough speaking time in seconds (about 2.5 words/s at rate 1)."""
        words = len(self.text.split())
        return words / (2.5 * self.rate) if self.rate > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "pitch": self.pitch, "rate": self.rate, "voice": self.voice}


def build_speech_request(
    text: str,
    config: AvatarConfig,
    voices: tuple[Voice, ...] | list[Voice] = DEFAULT_VOICES,
) -> SpeechRequest:
    voice = select_voice(voices, config)
    return SpeechRequest(
        text=text,
        pitch=config.voice.pitch or 1.0,
        rate=config.voice.speed or 1.0,
        voice=voice.name if voice else None,
    )


class SpeechOutput(ABC):
    """Where synthesised avatar speech goes."""

    @abstractmethod
    async def speak(self, request: SpeechRequest) -> None: ...


class LogSpeechOutput(SpeechOutput):
    """Write speech requests to the structured log."""

    def __init__(self) -> None:
        self.spoken: int = 0

    async def speak(self, request: SpeechRequest) -> None:
        self.spoken += 1
        logger.info(
            "avatar.speech",
            text=request.text,
            voice=request.voice,
            pitch=request.pitch,
            rate=request.rate,
        )
