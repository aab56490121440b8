"""Conductor — the single entry point for a user's conversational input.

For every input the conductor:

1. Merges the caller's context update into the user's context and runs
   emotion fusion, all under one lock so concurrent inputs serialise.
2. Asks the :class:`IntentRouter` which agents should answer.
3. Resolves those ids through the :class:`AgentRegistry`; unknown ids are
   logged and skipped.
4. Lets the :class:`ResponseSynthesizer` run the agents.
5. Hands the finished interaction to the :class:`LearningSink` as a
   detached task that never delays or fails the caller.

Any failure along the way degrades to :func:`apology_response`; the
apology is handed to the learning sink like any other answer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from companion_agent.agents.base import Agent
from companion_agent.agents.builtin import default_agents
from companion_agent.agents.registry import AgentRegistry
from companion_agent.config import get_settings
from companion_agent.emotion.fusion import EmotionFusion, KeywordEmotionFusion
from companion_agent.errors import AgentUnavailable, AggregationError
from companion_agent.models import (
    AgentResponse,
    InteractionResult,
    Modality,
    UserContext,
)
from companion_agent.orchestration.learning import LearningSink, create_learning_sink
from companion_agent.orchestration.router import IntentRouter
from companion_agent.orchestration.synthesizer import AgentFanoutSynthesizer, ResponseSynthesizer

if TYPE_CHECKING:
    from companion_agent.config import Settings

logger = structlog.get_logger(__name__)

CONDUCTOR_ID = "conductor"
APOLOGY = (
    "I'm sorry, I'm having trouble processing your request right now. "
    "Please try again in a moment."
)


def apology_response() -> AgentResponse:
    """The generic reply returned when no agent could answer."""
    return AgentResponse(agent_id=CONDUCTOR_ID, content=APOLOGY, confidence=0.0)


class Conductor:
    """Route user input to agents and aggregate their responses.

    All collaborators are injected; the conductor owns only the user's
    :class:`UserContext` and the set of pending learning tasks.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        fusion: EmotionFusion,
        synthesizer: ResponseSynthesizer,
        learning: LearningSink,
        router: IntentRouter | None = None,
        context: UserContext | None = None,
    ) -> None:
        self._registry = registry
        self._fusion = fusion
        self._synthesizer = synthesizer
        self._learning = learning
        self._router = router or IntentRouter()
        self._context = context or UserContext()
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def router(self) -> IntentRouter:
        return self._router

    # ── Main entry point ──────────────────────────────────────

    async def process_user_input(
        self,
        text: str,
        modality: Modality | str = Modality.TEXT,
        context: Mapping[str, Any] | None = None,
    ) -> InteractionResult:
        """Process one user input and return every agent's response.

        Never raises for collaborator failures: if the context update,
        emotion fusion or routing fails the result carries only the apology.
        """
        try:
            modality = Modality(modality)
            async with self._lock:
                if context:
                    self._context = self._context.merged(context)
                emotional_state = await self._fusion.analyze(text, modality)
                self._context = self._context.model_copy(update={"emotional_state": emotional_state})
                snapshot = self._context.model_copy(deep=True)
            selected = self._router.select_agents(text, emotional_state, snapshot)
        except Exception as exc:
            logger.exception("conductor.preprocessing_failed")
            responses = [apology_response()]
            self._spawn_learning(text, responses, self.get_context())
            return InteractionResult(
                responses=responses,
                errors=[f"input processing failed: {type(exc).__name__}"],
                degraded=True,
            )

        errors: list[str] = []
        agents: list[Agent] = []
        for agent_id in selected:
            agent = self._registry.get(agent_id)
            if agent is None:
                exc = AgentUnavailable(agent_id)
                logger.warning("conductor.agent_unavailable", agent=agent_id)
                errors.append(str(exc))
                continue
            agents.append(agent)

        degraded = False
        try:
            responses = await self._synthesizer.process_with_agents(text, agents, snapshot)
        except AggregationError as exc:
            logger.error(
                "conductor.aggregation_failed",
                error=str(exc),
                failures=exc.failures,
                partial=len(exc.partial),
            )
            errors.extend(f"{agent_id}: {reason}" for agent_id, reason in exc.failures.items())
            responses = list(exc.partial)
            degraded = True
        except Exception:
            logger.exception("conductor.synthesizer_error")
            errors.append("response synthesis failed")
            responses = []
            degraded = True

        if not responses:
            responses = [apology_response()]
            degraded = True
        self._spawn_learning(text, responses, snapshot)

        logger.info(
            "conductor.processed",
            selected=selected,
            responded=[r.agent_id for r in responses],
            primary=emotional_state.primary.value,
            degraded=degraded,
        )
        return InteractionResult(
            responses=responses,
            selected_agents=selected,
            emotional_state=emotional_state,
            errors=errors,
            degraded=degraded,
        )

    # ── Learning (fire-and-forget) ────────────────────────────

    def _spawn_learning(
        self,
        text: str,
        responses: list[AgentResponse],
        snapshot: UserContext,
    ) -> None:
        task = asyncio.create_task(self._learn(text, responses, snapshot))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _learn(
        self,
        text: str,
        responses: list[AgentResponse],
        snapshot: UserContext,
    ) -> None:
        try:
            await self._learning.learn_from_interaction(text, responses, snapshot)
        except Exception:
            logger.exception("conductor.learning_failed")

    @property
    def pending_learning(self) -> int:
        return len(self._background)

    async def drain_background(self) -> None:
        """Wait for every pending learning task (used at shutdown)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def record_feedback(
        self,
        agent_id: str,
        feedback: float,
        text: str,
        response: AgentResponse,
    ) -> bool:
        """Pass user feedback to one agent.  Returns ``False`` if unknown."""
        agent = self._registry.get(agent_id)
        if agent is None:
            logger.warning("conductor.agent_unavailable", agent=agent_id)
            return False
        await agent.learn(feedback, text, response)
        return True

    # ── Introspection ─────────────────────────────────────────

    def get_context(self) -> UserContext:
        return self._context.model_copy(deep=True)

    def get_system_health(self) -> dict[str, Any]:
        agents: dict[str, Any] = {}
        for agent in self._registry:
            diagnosis = agent.self_diagnose()
            agents[agent.id] = {
                "name": agent.name,
                "status": agent.get_status().model_dump(mode="json"),
                "last_activity": agent.get_last_activity().isoformat(),
                "health": diagnosis.health,
                "issues": diagnosis.issues,
                "recommendations": diagnosis.recommendations,
            }
        return {
            "agents": agents,
            "synthesizer": self._synthesizer.get_status(),
            "learning": self._learning.get_status(),
            "pending_learning": self.pending_learning,
            "context": self.get_context().model_dump(mode="json"),
        }


def create_conductor(settings: Settings | None = None) -> Conductor:
    """Wire a conductor with the built-in agents and keyword fusion."""
    settings = settings or get_settings()
    return Conductor(
        registry=AgentRegistry(default_agents()),
        fusion=KeywordEmotionFusion(),
        synthesizer=AgentFanoutSynthesizer(timeout=settings.agent_timeout_seconds),
        learning=create_learning_sink(settings),
    )
