"""Orchestration — intent routing, response synthesis and learning."""

from companion_agent.orchestration.conductor import Conductor, apology_response, create_conductor
from companion_agent.orchestration.learning import (
    CompositeLearningSink,
    InteractionHistorySink,
    LearningSink,
    WebhookLearningSink,
    create_learning_sink,
)
from companion_agent.orchestration.router import IntentRouter, IntentRule, default_rules
from companion_agent.orchestration.synthesizer import AgentFanoutSynthesizer, ResponseSynthesizer

__all__ = [
    "AgentFanoutSynthesizer",
    "CompositeLearningSink",
    "Conductor",
    "IntentRouter",
    "IntentRule",
    "InteractionHistorySink",
    "LearningSink",
    "ResponseSynthesizer",
    "WebhookLearningSink",
    "apology_response",
    "create_conductor",
    "create_learning_sink",
    "default_rules",
]
