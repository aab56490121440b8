"""Agent registry — register agents at startup and look them up by id."""

from __future__ import annotations

from collections.abc import Iterator

from companion_agent.agents.base import Agent


class AgentRegistry:
    """Append-only mapping of agent id to :class:`Agent`.

    Agents are registered once while the application is wired together.
    :meth:`get` returns ``None`` for an unknown id; deciding what a missing
    agent means is up to the caller.
    """

    def __init__(self, agents: list[Agent] | None = None) -> None:
        self._agents: dict[str, Agent] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        """Register *agent*.

        Raises :class:`ValueError` if its id is already taken.
        """
        if agent.id in self._agents:
            raise ValueError(
                f"Agent {agent.id!r} is already registered. "
                f"Registered: {sorted(self._agents)}"
            )
        self._agents[agent.id] = agent

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def ids(self) -> list[str]:
        """Return registered ids in registration order."""
        return list(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)
