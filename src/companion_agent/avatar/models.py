"""Avatar state and configuration models."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from companion_agent.models import clamp01


def _clamp_signed(value: Any) -> float:
    value = float(value)
    if value != value:
        return 0.0
    return max(-1.0, min(1.0, value))


class AvatarEmotion(BaseModel):
    """Independent expression channels in ``[0, 1]`` (they need not sum to 1)."""

    joy: float = 0.3
    empathy: float = 0.5
    concern: float = 0.0
    curiosity: float = 0.2
    neutral: float = 0.8

    @field_validator("joy", "empathy", "concern", "curiosity", "neutral", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp01(value)


class AvatarGesture(BaseModel):
    head_tilt: float = 0.0  # -1 left .. 1 right
    head_nod: float = 0.0  # -1 down .. 1 up
    eyebrow_raise: float = 0.0
    smile: float = 0.2
    blink: bool = False

    @field_validator("head_tilt", "head_nod", mode="before")
    @classmethod
    def _clamp_signed(cls, value: Any) -> float:
        return _clamp_signed(value)

    @field_validator("eyebrow_raise", "smile", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp01(value)


class AvatarState(BaseModel):
    emotion: AvatarEmotion = Field(default_factory=AvatarEmotion)
    gesture: AvatarGesture = Field(default_factory=AvatarGesture)
    speaking: bool = False
    lip_sync: float = 0.0

    @field_validator("lip_sync", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp01(value)


# ── Configuration ─────────────────────────────────────────────


class AvatarAppearance(BaseModel):
    gender: Literal["male", "female", "neutral"] = "neutral"
    age: int = 30
    ethnicity: str = "mixed"
    hair_color: str = "brown"
    eye_color: str = "blue"
    skin_tone: str = "medium"
    clothing: str = "casual"


class AvatarPersonality(BaseModel):
    traits: list[str] = Field(default_factory=lambda: ["empathetic", "intelligent", "helpful", "patient"])
    communication_style: Literal["formal", "casual", "friendly", "professional"] = "friendly"
    empathy_level: float = Field(0.9, ge=0.0, le=1.0)
    humor_level: float = Field(0.6, ge=0.0, le=1.0)


class AvatarVoice(BaseModel):
    pitch: float = Field(1.0, ge=0.0, le=2.0)
    speed: float = Field(1.0, gt=0.0, le=10.0)
    accent: str = "neutral"
    language: str = "en"


class AvatarConfig(BaseModel):
    id: str = "default-avatar"
    name: str = "Alex"
    appearance: AvatarAppearance = Field(default_factory=AvatarAppearance)
    personality: AvatarPersonality = Field(default_factory=AvatarPersonality)
    voice: AvatarVoice = Field(default_factory=AvatarVoice)

    def merged(self, update: Mapping[str, Any]) -> AvatarConfig:
        """Return a copy with *update*'s top-level keys replaced (shallow)."""
        data = self.model_dump()
        data.update({k: v for k, v in update.items() if k in type(self).model_fields})
        return type(self).model_validate(data)
