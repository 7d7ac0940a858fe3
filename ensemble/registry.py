"""Agent registry owned by one orchestrator instance."""

import logging

from ensemble.models import Agent

logger = logging.getLogger(__name__)


class AgentRegistry:
    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def add(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent
        return agent

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def all(self) -> list[Agent]:
        return list(self._agents.values())

    def main_agents(self) -> list[Agent]:
        return [a for a in self._agents.values() if not a.is_sub_agent]

    def sub_agents_of(self, parent_id: str) -> list[Agent]:
        return [a for a in self._agents.values() if a.parent_agent_id == parent_id]

    def find(self, key: str) -> Agent | None:
        """Look up by id first, then by type among main agents."""
        if key in self._agents:
            return self._agents[key]
        lowered = key.lower()
        for agent in self.main_agents():
            if agent.type == lowered:
                return agent
        return None

    def hierarchy(self) -> list[str]:
        lines = []
        for agent in self.main_agents():
            lines.append(f"{agent.type} ({agent.assigned_model or 'unassigned'})")
            for sub in self.sub_agents_of(agent.id):
                lines.append(f"  └─ {sub.type}: {sub.specialization} ({sub.assigned_model or 'unassigned'})")
        return lines

    def clear(self) -> None:
        self._agents.clear()
