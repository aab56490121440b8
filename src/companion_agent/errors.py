"""Error taxonomy for the orchestration and live-session engine.

Only :class:`AggregationError` ever reaches the caller of a primary
operation, and even then the :class:`~companion_agent.orchestration.conductor.Conductor`
converts it into partial results or an apology.  Everything else is
absorbed where it happens and logged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from companion_agent.models import AgentResponse


class CompanionError(Exception):
    """Base class for every error raised by the companion engine."""


class AcquisitionError(CompanionError):
    """Local audio/video capture could not be acquired."""


class NegotiationError(CompanionError):
    """Transport offer/answer exchange failed or timed out."""


class SamplingError(CompanionError):
    """A single sampling tick (frame grab, conversion, tracker call) failed."""


class AgentUnavailable(CompanionError):
    """A selected agent id has no entry in the registry."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id!r} is not registered.")
        self.agent_id = agent_id


class AggregationError(CompanionError):
    """The response synthesizer could not produce a complete batch.

    ``partial`` holds the responses that did succeed (possibly none) and
    ``failures`` maps agent id to a short error description.
    """

    def __init__(
        self,
        message: str,
        *,
        partial: list[AgentResponse] | None = None,
        failures: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.partial: list[AgentResponse] = partial or []
        self.failures: dict[str, str] = failures or {}
