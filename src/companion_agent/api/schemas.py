"""Request / response models shared across API route modules."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from companion_agent.models import AgentResponse, EmotionalState, Modality


class ChatRequest(BaseModel):
    text: str = Field(..., min_length=1)
    modality: Modality = Modality.TEXT
    context: dict[str, Any] | None = None
    speak: bool = False  # have the live avatar say the first response


class ChatResponse(BaseModel):
    success: bool
    responses: list[AgentResponse]
    selected_agents: list[str] = []
    emotional_state: EmotionalState | None = None
    errors: list[str] = []
    degraded: bool = False


class SessionStartRequest(BaseModel):
    avatar_config: dict[str, Any] | None = None


class MediaToggleRequest(BaseModel):
    audio: bool | None = None
    video: bool | None = None


class AnswerRequest(BaseModel):
    """A remote SDP answer from the signalling layer."""
    type: Literal["answer"] = "answer"
    sdp: str
