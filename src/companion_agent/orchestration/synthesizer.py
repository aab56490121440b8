"""Response synthesizer — run the selected agents and collect their answers.

Architecture
~~~~~~~~~~~~
* **ResponseSynthesizer** — abstract boundary used by the conductor.
* **AgentFanoutSynthesizer** — default: runs every selected agent
  concurrently with a per-agent timeout and error isolation.

If any agent fails, :class:`~companion_agent.errors.AggregationError` is
raised carrying the responses that *did* succeed, so the caller can decide
between partial results and an apology.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import structlog

from companion_agent.agents.base import Agent
from companion_agent.errors import AggregationError
from companion_agent.models import AgentResponse, UserContext

logger = structlog.get_logger(__name__)


class ResponseSynthesizer(ABC):
    """Turn (input, agents, context) into an ordered list of responses."""

    @abstractmethod
    async def process_with_agents(
        self,
        text: str,
        agents: list[Agent],
        context: UserContext,
    ) -> list[AgentResponse]:
        """Return one response per agent, in *agents* order.

        Raises :class:`AggregationError` when the batch is incomplete.
        """

    def get_status(self) -> dict[str, Any]:
        return {"name": type(self).__name__}


class AgentFanoutSynthesizer(ResponseSynthesizer):
    """Run agents concurrently; a slow or failing agent never blocks the rest."""

    def __init__(self, *, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._batches = 0
        self._failures = 0

    async def _run_one(self, agent: Agent, text: str, context: UserContext) -> AgentResponse:
        return await asyncio.wait_for(
            agent.process(text, context, context.emotional_state),
            timeout=self._timeout,
        )

    async def process_with_agents(
        self,
        text: str,
        agents: list[Agent],
        context: UserContext,
    ) -> list[AgentResponse]:
        self._batches += 1
        results = await asyncio.gather(
            *(self._run_one(agent, text, context) for agent in agents),
            return_exceptions=True,
        )

        responses: list[AgentResponse] = []
        failures: dict[str, str] = {}
        for agent, result in zip(agents, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                reason = "timeout" if isinstance(result, TimeoutError) else type(result).__name__
                failures[agent.id] = reason
                logger.warning("synthesizer.agent_failed", agent=agent.id, error=reason)
            else:
                responses.append(result)

        if failures:
            self._failures += 1
            raise AggregationError(
                f"{len(failures)} of {len(agents)} agents failed",
                partial=responses,
                failures=failures,
            )
        logger.debug("synthesizer.batch_complete", agents=[a.id for a in agents])
        return responses

    def get_status(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "timeout_seconds": self._timeout,
            "batches": self._batches,
            "failed_batches": self._failures,
        }
