"""Intent router — decide which agents should answer a user input.

Every :class:`IntentRule` is evaluated independently, so one input can
select several agents.  A rule fires when the lower-cased input contains
any of its keywords (plain substring match, so ``"how to"`` and
``"kill myself"`` work as phrases) **or** when its emotional/contextual
trigger is true.  Rules map 1:1 to agent ids, hence the result never
contains duplicates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import structlog

from companion_agent.models import AgentId, EmotionalState, UserContext

logger = structlog.get_logger(__name__)

Trigger = Callable[[EmotionalState, UserContext], bool]

MENTAL_HEALTH_KEYWORDS = (
    "sad", "depressed", "anxious", "worried", "stress", "overwhelmed",
    "hopeless", "worthless", "suicide", "kill myself", "end it all",
    "therapy", "counseling", "mental health", "psychiatrist",
)
LEARNING_KEYWORDS = (
    "learn", "teach", "study", "education", "course", "tutorial",
    "how to", "what is", "explain", "understand", "knowledge",
)
SOCIAL_KEYWORDS = (
    "lonely", "alone", "friend", "social", "connect", "relationship",
    "talk", "chat", "meet", "community", "group",
)
DAILY_LIVING_KEYWORDS = (
    "schedule", "reminder", "todo", "task", "routine", "habit",
    "organize", "plan", "manage", "automate", "productivity",
)
EMERGENCY_KEYWORDS = (
    "emergency", "help", "urgent", "crisis", "danger", "hurt",
    "pain", "bleeding", "unconscious", "heart attack", "stroke",
)

MIN_SOCIAL_CONNECTIONS = 3


@dataclass(frozen=True)
class IntentRule:
    """Keyword set plus optional trigger, bound to one agent id."""

    agent_id: str
    keywords: tuple[str, ...] = ()
    trigger: Trigger | None = None
    always: bool = False
    description: str = ""

    def matches(self, text: str, state: EmotionalState, context: UserContext) -> bool:
        if self.always:
            return True
        lowered = text.lower()
        if any(keyword in lowered for keyword in self.keywords):
            return True
        return bool(self.trigger and self.trigger(state, context))


def _negative_or_intense(state: EmotionalState, _: UserContext) -> bool:
    return state.valence < 0.3 or state.intensity > 0.7


def _few_connections(_: EmotionalState, context: UserContext) -> bool:
    return len(context.social_connections) < MIN_SOCIAL_CONNECTIONS


def _extreme_intensity(state: EmotionalState, _: UserContext) -> bool:
    return state.intensity > 0.9


def default_rules() -> list[IntentRule]:
    """The built-in routing table, in result order."""
    return [
        IntentRule(
            AgentId.MENTAL_HEALTH.value,
            MENTAL_HEALTH_KEYWORDS,
            _negative_or_intense,
            description="distress keywords, valence < 0.3 or intensity > 0.7",
        ),
        IntentRule(AgentId.EDUCATION.value, LEARNING_KEYWORDS, description="learning intent"),
        IntentRule(
            AgentId.SOCIAL_CONNECTION.value,
            SOCIAL_KEYWORDS,
            _few_connections,
            description=f"connection keywords or fewer than {MIN_SOCIAL_CONNECTIONS} social connections",
        ),
        IntentRule(AgentId.DAILY_LIVING.value, DAILY_LIVING_KEYWORDS, description="task / routine intent"),
        IntentRule(
            AgentId.EMERGENCY_RESPONSE.value,
            EMERGENCY_KEYWORDS,
            _extreme_intensity,
            description="emergency keywords or intensity > 0.9",
        ),
        IntentRule(AgentId.HEALTH_MONITORING.value, always=True, description="continuous care"),
    ]


@dataclass
class IntentRouter:
    """Evaluate :class:`IntentRule` objects against one input."""

    rules: list[IntentRule] = field(default_factory=default_rules)

    def __post_init__(self) -> None:
        ids = [r.agent_id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Intent rules must target distinct agents, got {ids}")

    def list_rules(self) -> list[IntentRule]:
        return list(self.rules)

    def select_agents(
        self,
        text: str,
        emotional_state: EmotionalState,
        context: UserContext,
    ) -> list[str]:
        """Return the ids of every agent whose rule matches, in rule order."""
        selected = [
            rule.agent_id
            for rule in self.rules
            if rule.matches(text, emotional_state, context)
        ]
        logger.debug(
            "intent_router.selected",
            agents=selected,
            valence=emotional_state.valence,
            intensity=emotional_state.intensity,
        )
        return selected
