"""Live session — media negotiation, sampling and the call lifecycle."""

from companion_agent.session.controller import (
    CallState,
    SessionController,
    SessionState,
    create_session_controller,
)
from companion_agent.session.negotiator import ConnectionMode, MediaNegotiator, NegotiationResult
from companion_agent.session.quality import CallQuality, quality_from_stats
from companion_agent.session.sampling import (
    AudioSampler,
    EmotionSample,
    PeriodicTask,
    SampleQueue,
    SamplingPipeline,
    VideoSampler,
    latest_sample,
    loudness_features,
)

__all__ = [
    "AudioSampler",
    "CallQuality",
    "CallState",
    "ConnectionMode",
    "EmotionSample",
    "MediaNegotiator",
    "NegotiationResult",
    "PeriodicTask",
    "SampleQueue",
    "SamplingPipeline",
    "SessionController",
    "SessionState",
    "VideoSampler",
    "create_session_controller",
    "latest_sample",
    "loudness_features",
    "quality_from_stats",
]
