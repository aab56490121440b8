"""Default in-process agents for the six routable domains.

These are deliberately small: each one answers from a fixed template set,
picking a gentler template when the user's valence is low.  Real domain
handlers replace them by registering agents with the same ids.
"""

from __future__ import annotations

from dataclasses import dataclass

from companion_agent.agents.base import Agent
from companion_agent.models import (
    AgentId,
    AgentResponse,
    EmotionalState,
    EmotionLabel,
    UserContext,
)

_LOW_VALENCE = 0.4


@dataclass(frozen=True, slots=True)
class AgentProfile:
    agent_id: AgentId
    name: str
    description: str
    capabilities: tuple[str, ...]
    reply: str
    supportive_reply: str
    suggested_actions: tuple[str, ...]
    confidence: float = 0.75


PROFILES: tuple[AgentProfile, ...] = (
    AgentProfile(
        agent_id=AgentId.MENTAL_HEALTH,
        name="Mental Health Support Agent",
        description="Emotional support, coping strategies and referrals.",
        capabilities=("mental health assessment", "crisis intervention", "coping strategies"),
        reply="Thank you for sharing how you feel. Would you like to try a short grounding exercise together?",
        supportive_reply=(
            "I'm really sorry you're going through this. You don't have to face it alone, "
            "and talking to someone you trust or a professional can help."
        ),
        suggested_actions=("breathing_exercise", "journal_entry", "contact_professional"),
        confidence=0.8,
    ),
    AgentProfile(
        agent_id=AgentId.EDUCATION,
        name="Education Agent",
        description="Explains topics and builds step-by-step learning plans.",
        capabilities=("explanations", "learning plans", "tutorials"),
        reply="Let's break that down into small steps. I'll start with the basics and we can go deeper as you like.",
        supportive_reply="Learning can feel like a lot at times. Let's take it one small step at a time.",
        suggested_actions=("start_lesson", "show_examples", "quiz_me"),
    ),
    AgentProfile(
        agent_id=AgentId.SOCIAL_CONNECTION,
        name="Social Connection Agent",
        description="Helps the user stay in touch and find community.",
        capabilities=("reconnect with contacts", "community suggestions"),
        reply="Staying connected matters. Is there someone you'd like to catch up with this week?",
        supportive_reply="Feeling disconnected is hard. Maybe we could reach out to one person together today?",
        suggested_actions=("message_friend", "find_local_group", "schedule_call"),
        confidence=0.7,
    ),
    AgentProfile(
        agent_id=AgentId.DAILY_LIVING,
        name="Daily Living Agent",
        description="Schedules, reminders, routines and habits.",
        capabilities=("reminders", "routines", "task planning"),
        reply="I can help you organise that. Shall I add it to your plan for today?",
        supportive_reply="Let's keep today simple and pick just one task to focus on first.",
        suggested_actions=("create_reminder", "plan_day", "review_tasks"),
    ),
    AgentProfile(
        agent_id=AgentId.EMERGENCY_RESPONSE,
        name="Emergency Response Agent",
        description="Recognises urgent situations and points to immediate help.",
        capabilities=("emergency triage", "crisis lines", "emergency contacts"),
        reply="If you are in immediate danger, please call your local emergency number right now.",
        supportive_reply=(
            "Your safety comes first. If you are in danger or thinking about harming yourself, "
            "please call your local emergency number or a crisis line now."
        ),
        suggested_actions=("call_emergency_services", "contact_crisis_line", "notify_emergency_contact"),
        confidence=0.9,
    ),
    AgentProfile(
        agent_id=AgentId.HEALTH_MONITORING,
        name="Health Monitoring Agent",
        description="Continuous check-in on wellbeing and health metrics.",
        capabilities=("wellbeing check-in", "health metric tracking"),
        reply="I'm keeping an eye on how you're doing. Remember to drink some water and take a short break.",
        supportive_reply="I've noted how you're feeling. Resting, eating and sleeping well can make a real difference.",
        suggested_actions=("log_mood", "hydration_reminder"),
        confidence=0.6,
    ),
)


class TemplateAgent(Agent):
    """Agent that answers from a fixed :class:`AgentProfile`."""

    def __init__(self, profile: AgentProfile) -> None:
        super().__init__(
            profile.agent_id.value,
            profile.name,
            profile.description,
            list(profile.capabilities),
        )
        self._profile = profile

    async def respond(
        self,
        text: str,
        context: UserContext,
        emotional_state: EmotionalState,
    ) -> AgentResponse:
        low = emotional_state.valence < _LOW_VALENCE
        content = self._profile.supportive_reply if low else self._profile.reply
        if context.accessibility.simple_language:
            content = content.split(". ")[0].rstrip(".") + "."

        support = EmotionalState(
            primary=EmotionLabel.JOY if not low else EmotionLabel.NEUTRAL,
            intensity=0.4,
            valence=min(1.0, emotional_state.valence + 0.2),
            arousal=max(0.0, emotional_state.arousal - 0.1),
            confidence=self._profile.confidence,
        )
        repeated = self.recall("last_input") == text
        self.remember("last_input", text)
        return AgentResponse(
            agent_id=self.id,
            content=content,
            confidence=self._profile.confidence,
            suggested_actions=self._profile.suggested_actions,
            emotional_support=support,
            metadata={"supportive": low, "repeated": repeated, "capabilities": list(self.capabilities)},
        )


def default_agents() -> list[Agent]:
    """Return one :class:`TemplateAgent` per routable domain."""
    return [TemplateAgent(p) for p in PROFILES]
