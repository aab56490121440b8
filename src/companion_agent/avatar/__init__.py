"""Avatar — expression mapping, idle gestures and speech."""

from companion_agent.avatar.expression import (
    AvatarPresence,
    RenderParams,
    analyze_sentiment,
    dominant_emotion,
    emotion_vector_for,
    generate_gesture,
    render,
)
from companion_agent.avatar.models import AvatarConfig, AvatarEmotion, AvatarGesture, AvatarState
from companion_agent.avatar.speech import (
    LogSpeechOutput,
    SpeechOutput,
    SpeechRequest,
    build_speech_request,
    select_reply,
    select_voice,
)

__all__ = [
    "AvatarConfig",
    "AvatarEmotion",
    "AvatarGesture",
    "AvatarPresence",
    "AvatarState",
    "LogSpeechOutput",
    "RenderParams",
    "SpeechOutput",
    "SpeechRequest",
    "analyze_sentiment",
    "build_speech_request",
    "dominant_emotion",
    "emotion_vector_for",
    "generate_gesture",
    "render",
    "select_reply",
    "select_voice",
]
