"""Agents — the domain handlers the conductor dispatches to."""

from companion_agent.agents.base import Agent, Diagnosis
from companion_agent.agents.builtin import TemplateAgent, default_agents
from companion_agent.agents.registry import AgentRegistry

__all__ = ["Agent", "AgentRegistry", "Diagnosis", "TemplateAgent", "default_agents"]
