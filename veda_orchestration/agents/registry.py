"""Agent registry for lookup by id and by supported content kind."""

import asyncio
from typing import Any, Dict, List, Optional, Set

from loguru import logger

from veda_orchestration.agents.base_agent import SpecializedAgent
from veda_orchestration.schemas.health import AgentHealth, HealthStatus
from veda_orchestration.schemas.request import ContentKind


class AgentRegistry:
    """
    Registry of the agents one orchestrator may invoke.

    An explicit instance is created by the caller and injected into the
    router, workflow manager, health monitor and orchestrator; there is no
    module-level registry.

    Features:
    - Registration keyed by agent_id (re-registering replaces the agent)
    - Content-kind index for routing lookups
    - Synchronous reads, lock-guarded writes
    - Shutdown of every registered agent
    """

    def __init__(self):
        self._agents: Dict[str, SpecializedAgent] = {}
        self._kind_index: Dict[ContentKind, Set[str]] = {}  # content kind -> agent_ids
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="AgentRegistry")

        self.logger.info("AgentRegistry initialized")

    async def register_agent(self, agent: SpecializedAgent) -> str:
        """
        Register an agent with the registry.

        Args:
            agent: The agent instance

        Returns:
            The agent's ID
        """
        async with self._lock:
            agent_id = agent.agent_id

            # Replacing an agent drops its old index entries
            if agent_id in self._agents:
                self._drop_from_index(self._agents[agent_id])
                self.logger.warning(f"Replacing registered agent: {agent_id}")

            self._agents[agent_id] = agent
            for kind in agent.supported_content_kinds:
                self._kind_index.setdefault(kind, set()).add(agent_id)

            self.logger.info(
                f"Agent registered: {agent.name}",
                agent_id=agent_id,
                content_kinds=sorted(k.value for k in agent.supported_content_kinds),
            )
            return agent_id

    async def unregister_agent(self, agent_id: str) -> bool:
        """
        Remove an agent from the registry.

        Args:
            agent_id: The agent's ID

        Returns:
            True if agent was removed, False if not found
        """
        async with self._lock:
            agent = self._agents.pop(agent_id, None)
            if agent is None:
                self.logger.warning(f"Agent not found for unregistration: {agent_id}")
                return False

            self._drop_from_index(agent)
            self.logger.info(f"Agent unregistered: {agent.name}", agent_id=agent_id)
            return True

    def _drop_from_index(self, agent: SpecializedAgent) -> None:
        for kind in agent.supported_content_kinds:
            ids = self._kind_index.get(kind)
            if ids is None:
                continue
            ids.discard(agent.agent_id)
            if not ids:
                del self._kind_index[kind]

    def get_agent(self, agent_id: str) -> Optional[SpecializedAgent]:
        """Get a registered agent by id, or None."""
        return self._agents.get(agent_id)

    def has_agent(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def get_all_agents(self) -> List[SpecializedAgent]:
        """All registered agents in registration order."""
        return list(self._agents.values())

    def get_agent_ids(self) -> List[str]:
        return list(self._agents.keys())

    def find_agents_by_content_kind(self, content_kind: ContentKind) -> List[SpecializedAgent]:
        """
        Find all agents declaring support for a content kind.

        Args:
            content_kind: The content kind to search for

        Returns:
            Matching agents in registration order (may be empty)
        """
        ids = self._kind_index.get(ContentKind(content_kind), set())
        return [agent for agent_id, agent in self._agents.items() if agent_id in ids]

    async def get_agents_health(self) -> Dict[str, AgentHealth]:
        """
        Self-reported health of every registered agent, keyed by agent_id.

        Agents report concurrently. One whose get_health() raises is
        reported as unknown.
        """
        agents = list(self._agents.values())
        reports = await asyncio.gather(*(agent.get_health() for agent in agents), return_exceptions=True)

        health: Dict[str, AgentHealth] = {}
        for agent, report in zip(agents, reports):
            if not isinstance(report, AgentHealth):
                self.logger.warning(f"Health report failed for {agent.agent_id}: {report}")
                report = AgentHealth(agent_id=agent.agent_id, status=HealthStatus.UNKNOWN)
            health[agent.agent_id] = report
        return health

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get registry statistics for monitoring.

        Returns:
            Dictionary with registry stats
        """
        return {
            "total_agents": len(self._agents),
            "agent_ids": list(self._agents.keys()),
            "content_kinds": sorted(k.value for k in self._kind_index),
        }

    async def shutdown(self) -> None:
        """Shut down and remove every registered agent."""
        async with self._lock:
            agents = list(self._agents.values())
            self._agents.clear()
            self._kind_index.clear()

        for agent in agents:
            try:
                await agent.shutdown()
            except Exception as e:
                self.logger.error(f"Error shutting down agent {agent.agent_id}: {e}")

        self.logger.info("AgentRegistry shutdown complete", agents=len(agents))

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.shutdown()
