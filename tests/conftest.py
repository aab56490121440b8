"""Shared pytest fixtures."""

from __future__ import annotations

import random

import pytest

from companion_agent.agents.builtin import default_agents
from companion_agent.agents.registry import AgentRegistry
from companion_agent.config import Settings
from companion_agent.emotion.fusion import KeywordEmotionFusion
from companion_agent.models import EmotionalState, SocialConnection, UserContext
from companion_agent.orchestration.conductor import Conductor
from companion_agent.orchestration.learning import InteractionHistorySink
from companion_agent.orchestration.synthesizer import AgentFanoutSynthesizer


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with short timers so session tests finish quickly."""
    return Settings(
        capture_timeout_seconds=0.5,
        negotiation_fallback_delay_seconds=0.05,
        negotiation_timeout_seconds=2.0,
        video_sample_interval_seconds=0.01,
        audio_sample_interval_seconds=0.01,
        render_interval_seconds=0.01,
        tracker_timeout_seconds=0.2,
        speech_min_interval_seconds=60.0,
        agent_timeout_seconds=1.0,
        learning_webhook_url="",
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def neutral_state() -> EmotionalState:
    return EmotionalState(intensity=0.2, valence=0.5)


@pytest.fixture
def connected_context() -> UserContext:
    """Context with enough social connections that the social trigger stays off."""
    return UserContext(
        social_connections=[
            SocialConnection(id=f"c{i}", name=name)
            for i, name in enumerate(("Sam", "Robin", "Kai"))
        ]
    )


@pytest.fixture
def history_sink() -> InteractionHistorySink:
    return InteractionHistorySink(max_size=10)


@pytest.fixture
def conductor(history_sink: InteractionHistorySink) -> Conductor:
    return Conductor(
        registry=AgentRegistry(default_agents()),
        fusion=KeywordEmotionFusion(),
        synthesizer=AgentFanoutSynthesizer(timeout=1.0),
        learning=history_sink,
    )
