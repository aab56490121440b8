"""Learning sinks — where finished interactions go for offline improvement.

Architecture
~~~~~~~~~~~~
* **LearningSink** — abstract boundary.  The conductor calls
  :meth:`LearningSink.learn_from_interaction` as a detached task, so an
  implementation may be slow or fail without affecting the user.
* **InteractionHistorySink** — keeps a bounded in-memory history.
* **WebhookLearningSink** — POSTs each interaction as JSON.
* **CompositeLearningSink** — fan-out with per-sink error isolation.
* **create_learning_sink()** — factory that wires sinks from settings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from companion_agent.models import AgentResponse, UserContext, utcnow

if TYPE_CHECKING:
    from companion_agent.config import Settings

logger = structlog.get_logger(__name__)


def interaction_record(
    text: str,
    responses: list[AgentResponse],
    context: UserContext,
) -> dict[str, Any]:
    """JSON-ready summary of one interaction."""
    return {
        "timestamp": utcnow().isoformat(),
        "input": text,
        "agents": [r.agent_id for r in responses],
        "responses": [r.model_dump(mode="json") for r in responses],
        "emotional_state": context.emotional_state.model_dump(mode="json"),
    }


class LearningSink(ABC):
    """Contract for interaction learning back-ends."""

    name: str = "base"

    @abstractmethod
    async def learn_from_interaction(
        self,
        text: str,
        responses: list[AgentResponse],
        context: UserContext,
    ) -> None:
        """Consume one finished interaction.  May raise; callers log it."""

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name}


class InteractionHistorySink(LearningSink):
    """Bounded in-memory log of recent interactions."""

    name = "history"

    def __init__(self, max_size: int = 500) -> None:
        self._history: deque[dict[str, Any]] = deque(maxlen=max_size)
        self._total = 0

    async def learn_from_interaction(
        self,
        text: str,
        responses: list[AgentResponse],
        context: UserContext,
    ) -> None:
        self._history.append(interaction_record(text, responses, context))
        self._total += 1

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name, "stored": len(self._history), "total": self._total}


class WebhookLearningSink(LearningSink):
    """POST interaction JSON to an external endpoint."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._sent = 0

    async def learn_from_interaction(
        self,
        text: str,
        responses: list[AgentResponse],
        context: UserContext,
    ) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(self._url, json=interaction_record(text, responses, context))
            resp.raise_for_status()
        self._sent += 1
        logger.debug("learning.webhook_sent", url=self._url)

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name, "url": self._url, "sent": self._sent}


class CompositeLearningSink(LearningSink):
    """Forward every interaction to several sinks.

    Each sink runs independently; one failing never starves the others.
    If any sink raised, the first error is re-raised after all have run.
    """

    name = "composite"

    def __init__(self, sinks: list[LearningSink] | None = None) -> None:
        self._sinks: list[LearningSink] = sinks or []

    def add_sink(self, sink: LearningSink) -> None:
        self._sinks.append(sink)

    @property
    def sink_names(self) -> list[str]:
        return [s.name for s in self._sinks]

    async def learn_from_interaction(
        self,
        text: str,
        responses: list[AgentResponse],
        context: UserContext,
    ) -> None:
        first_error: Exception | None = None
        for sink in self._sinks:
            try:
                await sink.learn_from_interaction(text, responses, context)
            except Exception as exc:
                logger.warning("learning.sink_failed", sink=sink.name, error=str(exc))
                first_error = first_error or exc
        if first_error is not None:
            raise first_error

    def get_status(self) -> dict[str, Any]:
        return {"name": self.name, "sinks": [s.get_status() for s in self._sinks]}


def create_learning_sink(settings: Settings) -> CompositeLearningSink:
    """Build the learning sink wired from application settings.

    * **InteractionHistorySink** is always registered.
    * **WebhookLearningSink** is added when ``learning_webhook_url`` is set.
    """
    sink = CompositeLearningSink([InteractionHistorySink(settings.learning_history_size)])
    if settings.learning_webhook_url:
        sink.add_sink(WebhookLearningSink(settings.learning_webhook_url))
    return sink
