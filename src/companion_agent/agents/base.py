"""Abstract base class for all response agents."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from companion_agent.models import (
    AgentResponse,
    AgentState,
    AgentStatus,
    EmotionalState,
    UserContext,
    utcnow,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """Result of :meth:`Agent.self_diagnose`."""

    health: str  # excellent | good | fair | poor
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


class Agent(ABC):
    """Contract that every domain agent must implement.

    An agent turns the user's input, the current :class:`UserContext` and
    the fused :class:`EmotionalState` into one :class:`AgentResponse`.
    Subclasses implement :meth:`respond`; :meth:`process` wraps it with
    activity, timing and error bookkeeping so :meth:`get_status` stays
    accurate for every agent.
    """

    def __init__(
        self,
        agent_id: str,
        name: str,
        description: str = "",
        capabilities: list[str] | None = None,
        *,
        history_size: int = 100,
    ) -> None:
        self.id = agent_id
        self.name = name
        self.description = description
        self.capabilities: tuple[str, ...] = tuple(capabilities or ())
        self._status = AgentStatus()
        self._memory: dict[str, Any] = {}
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)

    # ── Capability ────────────────────────────────────────────

    @abstractmethod
    async def respond(
        self,
        text: str,
        context: UserContext,
        emotional_state: EmotionalState,
    ) -> AgentResponse:
        """Produce a response for *text*.  Must not mutate *context*."""

    async def process(
        self,
        text: str,
        context: UserContext,
        emotional_state: EmotionalState,
    ) -> AgentResponse:
        """Run :meth:`respond` and record activity, latency and failures."""
        start = time.monotonic()
        self._status.state = AgentState.ACTIVE
        self._status.last_activity = utcnow()
        try:
            response = await self.respond(text, context, emotional_state)
        except Exception:
            self._status.error_count += 1
            self._status.state = AgentState.ERROR
            raise
        self._status.performance.response_time_ms = round((time.monotonic() - start) * 1000, 2)
        self._status.processed_count += 1
        self._status.state = AgentState.IDLE
        return response

    def get_status(self) -> AgentStatus:
        return self._status.model_copy(deep=True)

    def get_last_activity(self) -> datetime:
        return self._status.last_activity

    # ── Feedback ──────────────────────────────────────────────

    async def learn(self, feedback: float, text: str, response: AgentResponse) -> None:
        """Record user feedback in ``[0, 1]`` and fold it into satisfaction."""
        self._history.append(
            {"input": text, "response": response, "feedback": feedback, "timestamp": utcnow()}
        )
        perf = self._status.performance
        perf.user_satisfaction = (perf.user_satisfaction + feedback) / 2
        if feedback < 0.5:
            logger.info("agent.poor_feedback", agent=self.id, feedback=feedback)
        elif feedback > 0.8:
            logger.debug("agent.good_feedback", agent=self.id, feedback=feedback)

    def self_diagnose(self) -> Diagnosis:
        """Grade the agent's health from its performance counters."""
        issues: list[str] = []
        recommendations: list[str] = []
        perf = self._status.performance

        if perf.accuracy < 0.7:
            issues.append("Low accuracy detected")
            recommendations.append("Review recent interactions and update response patterns")
        if perf.user_satisfaction < 0.6:
            issues.append("Low user satisfaction")
            recommendations.append("Analyse user feedback and improve response quality")
        if self._status.error_count > 5:
            issues.append("High error count")
            recommendations.append("Review error logs and implement fixes")

        if not issues:
            health = "excellent"
        elif len(issues) <= 2:
            health = "good"
        elif len(issues) <= 4:
            health = "fair"
        else:
            health = "poor"
        return Diagnosis(health=health, issues=issues, recommendations=recommendations)

    # ── Scratch memory ────────────────────────────────────────

    def remember(self, key: str, value: Any) -> None:
        self._memory[key] = value
        self._status.memory_usage = len(self._memory)

    def recall(self, key: str, default: Any = None) -> Any:
        return self._memory.get(key, default)
