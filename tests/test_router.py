"""Tests for the intent router."""

import pytest

from companion_agent.models import AgentId, EmotionalState, SocialConnection, UserContext
from companion_agent.orchestration.router import IntentRouter, IntentRule, default_rules

HEALTH = AgentId.HEALTH_MONITORING.value


class TestIntentRouter:
    """Unit tests for :class:`IntentRouter`."""

    def setup_method(self):
        self.router = IntentRouter()

    def test_distress_selects_mental_health(self, neutral_state, connected_context):
        selected = self.router.select_agents(
            "I feel hopeless and worthless", neutral_state, connected_context,
        )
        assert AgentId.MENTAL_HEALTH.value in selected
        assert HEALTH in selected

    def test_learning_request_selects_education_only(self, neutral_state, connected_context):
        selected = self.router.select_agents(
            "teach me how to bake bread", neutral_state, connected_context,
        )
        assert selected == [AgentId.EDUCATION.value, HEALTH]

    def test_few_connections_selects_social_regardless_of_text(self, neutral_state):
        context = UserContext(social_connections=[SocialConnection(id="c1", name="Sam")])
        selected = self.router.select_agents("teach me how to bake bread", neutral_state, context)
        assert AgentId.SOCIAL_CONNECTION.value in selected

    def test_negative_valence_selects_mental_health(self, connected_context):
        state = EmotionalState(valence=0.1, intensity=0.3)
        selected = self.router.select_agents("what is the weather", state, connected_context)
        assert AgentId.MENTAL_HEALTH.value in selected

    def test_extreme_intensity_selects_emergency(self, connected_context):
        state = EmotionalState(intensity=0.95, valence=0.5)
        selected = self.router.select_agents("hello", state, connected_context)
        assert AgentId.EMERGENCY_RESPONSE.value in selected

    def test_keyword_match_is_case_insensitive_phrase(self, neutral_state, connected_context):
        selected = self.router.select_agents("HEART ATTACK symptoms", neutral_state, connected_context)
        assert AgentId.EMERGENCY_RESPONSE.value in selected

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "hello",
            "I feel sad and lonely, please help me plan my study schedule",
            "emergency! I'm anxious, teach me to manage stress with friends",
        ],
    )
    def test_health_monitoring_always_once(self, text, neutral_state):
        selected = self.router.select_agents(text, neutral_state, UserContext())
        assert selected.count(HEALTH) == 1
        assert len(selected) == len(set(selected))

    def test_selection_is_deterministic(self, neutral_state):
        context = UserContext()
        first = self.router.select_agents("I'm lonely and stressed", neutral_state, context)
        second = self.router.select_agents("I'm lonely and stressed", neutral_state, context)
        assert first == second

    def test_duplicate_rules_rejected(self):
        with pytest.raises(ValueError):
            IntentRouter(rules=[IntentRule("a", ("x",)), IntentRule("a", ("y",))])

    def test_default_rules_cover_every_agent(self):
        ids = {rule.agent_id for rule in default_rules()}
        assert ids == {agent.value for agent in AgentId}
