"""Shared Pydantic models used across the framework."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


def clamp01(value: float) -> float:
    """Clamp *value* into ``[0, 1]`` (NaN becomes 0)."""
    value = float(value)
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


# ── Enums ─────────────────────────────────────────────────────

class EmotionLabel(str, Enum):
    """Fixed emotion vocabulary shared by fusion, tracking and speech."""
    JOY = "joy"
    SADNESS = "sadness"
    ANGER = "anger"
    FEAR = "fear"
    SURPRISE = "surprise"
    DISGUST = "disgust"
    NEUTRAL = "neutral"

    @classmethod
    def coerce(cls, value: Any) -> EmotionLabel:
        """Map an arbitrary label to the vocabulary, defaulting to neutral."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NEUTRAL


class Modality(str, Enum):
    TEXT = "text"
    VOICE = "voice"
    VIDEO = "video"
    MULTIMODAL = "multimodal"


class AgentId(str, Enum):
    """Identifiers of the agents the intent router can select."""
    MENTAL_HEALTH = "mental-health"
    EDUCATION = "education"
    SOCIAL_CONNECTION = "social-connection"
    DAILY_LIVING = "daily-living"
    EMERGENCY_RESPONSE = "emergency-response"
    HEALTH_MONITORING = "health-monitoring"


class AgentState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    ERROR = "error"


# ── Affect ────────────────────────────────────────────────────

class EmotionalState(BaseModel):
    """Normalised affect snapshot.

    Numeric fields are clamped into ``[0, 1]`` on construction and the
    model is frozen: a new state replaces the old one, it is never edited.
    """

    model_config = ConfigDict(frozen=True)

    primary: EmotionLabel = EmotionLabel.NEUTRAL
    intensity: float = 0.5
    valence: float = 0.5
    arousal: float = 0.5
    confidence: float = 0.5
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("primary", mode="before")
    @classmethod
    def _coerce_label(cls, value: Any) -> EmotionLabel:
        return EmotionLabel.coerce(value)

    @field_validator("intensity", "valence", "arousal", "confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp01(value)


# ── User context ──────────────────────────────────────────────

class LearningStyle(BaseModel):
    visual: float = 0.25
    auditory: float = 0.25
    kinesthetic: float = 0.25
    reading: float = 0.25


class AccessibilityPreferences(BaseModel):
    visual_impairment: bool = False
    hearing_impairment: bool = False
    motor_disability: bool = False
    cognitive_disability: bool = False
    high_contrast: bool = False
    screen_reader: bool = False
    voice_commands: bool = False
    simple_language: bool = False


class UserGoal(BaseModel):
    id: str
    category: str = "personal"  # health | education | social | financial | creative | personal
    title: str
    description: str = ""
    progress: float = Field(0.0, ge=0.0, le=1.0)
    target_date: datetime | None = None
    priority: str = "medium"  # low | medium | high | critical


class MentalHealthMetrics(BaseModel):
    phq9: float = 0.0
    gad7: float = 0.0
    sleep_quality: float = 0.5
    stress_level: float = 0.5


class PhysicalHealthMetrics(BaseModel):
    activity_level: float = 0.5
    nutrition_score: float = 0.5
    hydration_level: float = 0.5
    vital_signs: dict[str, Any] = Field(default_factory=dict)


class HealthMetrics(BaseModel):
    mental_health: MentalHealthMetrics = Field(default_factory=MentalHealthMetrics)
    physical_health: PhysicalHealthMetrics = Field(default_factory=PhysicalHealthMetrics)


class SocialConnection(BaseModel):
    id: str
    name: str
    relationship: str = ""
    last_contact: datetime | None = None
    emotional_support: float = Field(0.5, ge=0.0, le=1.0)
    frequency: str = "weekly"  # daily | weekly | monthly | rarely


class UserContext(BaseModel):
    """Everything the conductor knows about the user for one session."""

    emotional_state: EmotionalState = Field(default_factory=EmotionalState)
    learning_style: LearningStyle = Field(default_factory=LearningStyle)
    accessibility: AccessibilityPreferences = Field(default_factory=AccessibilityPreferences)
    language: str = "en"
    age: int | None = None
    goals: list[UserGoal] = Field(default_factory=list)
    health_metrics: HealthMetrics = Field(default_factory=HealthMetrics)
    social_connections: list[SocialConnection] = Field(default_factory=list)

    def merged(self, update: Mapping[str, Any]) -> UserContext:
        """Return a new context with *update*'s top-level keys replaced.

        The merge is shallow: ``{"accessibility": {...}}`` replaces the whole
        accessibility block.  Unknown keys are ignored.
        """
        data = self.model_dump()
        data.update({k: v for k, v in update.items() if k in type(self).model_fields})
        return type(self).model_validate(data)


# ── Agent I/O ─────────────────────────────────────────────────

class AgentResponse(BaseModel):
    """One agent's structured answer.  Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    content: str
    confidence: float = 0.5
    suggested_actions: tuple[str, ...] = ()
    emotional_support: EmotionalState | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp01(value)


class PerformanceMetrics(BaseModel):
    response_time_ms: float = 0.0
    accuracy: float = 0.8
    user_satisfaction: float = 0.8


class AgentStatus(BaseModel):
    state: AgentState = AgentState.IDLE
    last_activity: datetime = Field(default_factory=utcnow)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    memory_usage: int = 0
    error_count: int = 0
    processed_count: int = 0


class InteractionResult(BaseModel):
    """Outcome of :meth:`Conductor.process_user_input`."""

    responses: list[AgentResponse] = Field(default_factory=list)
    selected_agents: list[str] = Field(default_factory=list)
    emotional_state: EmotionalState | None = None
    errors: list[str] = Field(default_factory=list)
    degraded: bool = False
