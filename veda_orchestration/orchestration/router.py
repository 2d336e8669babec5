"""Request routing: pick the agents for a request and the order they run in.

Selection:
1. Base list from the content-kind table (unknown content may first be
   reclassified by an optional classifier)
2. Augment with multilingual / social-graph / educational-content agents
   based on metadata
3. Keep only agents that are registered, available and support the kind

Ordering is a depth-first topological sort over the "must run after"
dependency table, restricted to the selected agents.
"""

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.config.routing import (
    AGENT_DEPENDENCIES,
    CONTENT_KIND_AGENTS,
    EDUCATIONAL_CONTENT,
    EDUCATIONAL_TAGS,
    MULTILINGUAL,
    PRIORITY_TIME_MULTIPLIERS,
    ROUTING_OVERHEAD_FACTOR,
    SOCIAL_GRAPH,
    SOCIAL_PLATFORMS,
)
from veda_orchestration.config.settings import settings
from veda_orchestration.errors import CircularDependencyError
from veda_orchestration.schemas.request import ContentKind, Priority, VerificationRequest
from veda_orchestration.schemas.workflow import RoutingDecision
from veda_orchestration.utils.logging import get_structured_logger

ContentClassifier = Callable[[VerificationRequest], Awaitable[ContentKind]]


class RequestRouter:
    """Select and order agents for a verification request.

    Zero surviving candidates is not an error here: the router returns an
    empty selection and the caller decides what to do with it.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        classifier: Optional[ContentClassifier] = None,
        content_kind_agents: Optional[Mapping[str, Sequence[str]]] = None,
        dependencies: Optional[Mapping[str, Sequence[str]]] = None,
        default_language: Optional[str] = None,
    ) -> None:
        """Initialize RequestRouter.

        Args:
            registry: Registry the candidates are looked up in.
            classifier: Optional async classifier for unknown content.
            content_kind_agents: Base agent list per content kind.
            dependencies: "Must run after" edges per agent id.
            default_language: Language that does not need multilingual analysis.
        """
        self.registry = registry
        self.classifier = classifier
        self.content_kind_agents: Dict[str, List[str]] = {
            k: list(v) for k, v in (content_kind_agents or CONTENT_KIND_AGENTS).items()
        }
        self.dependencies: Dict[str, List[str]] = {
            k: list(v) for k, v in (dependencies if dependencies is not None else AGENT_DEPENDENCIES).items()
        }
        self.default_language = (default_language or settings.default_language).lower()
        self._logger = get_structured_logger(__name__, component="RequestRouter")

    async def route(self, request: VerificationRequest) -> RoutingDecision:
        """Route a verification request to the appropriate agents.

        Raises:
            CircularDependencyError: If the dependency table has a cycle
                among the selected agents.
        """
        content_kind = await self.determine_content_kind(request)

        base = self.content_kind_agents.get(
            content_kind.value, self.content_kind_agents.get(ContentKind.UNKNOWN.value, [])
        )
        candidates = self.augment(base, request, content_kind)
        selected = await self.filter_candidates(candidates, content_kind)

        execution_order = self.determine_execution_order(selected)
        estimated_time = self.estimate_processing_time(selected, request.priority)
        reasoning = self._build_reasoning(content_kind, selected, execution_order, request)

        self._logger.info(
            "request_routed",
            request_id=request.id,
            content_kind=content_kind.value,
            candidates=candidates,
            selected=selected,
            estimated_time=estimated_time,
        )

        return RoutingDecision(
            selected_agents=selected,
            execution_order=execution_order,
            estimated_time=estimated_time,
            content_kind=content_kind,
            reasoning=reasoning,
        )

    async def determine_content_kind(self, request: VerificationRequest) -> ContentKind:
        """Return the request's kind, asking the classifier when it is unknown."""
        if request.content_kind != ContentKind.UNKNOWN or self.classifier is None:
            return request.content_kind

        try:
            classified = await self.classifier(request)
            return ContentKind(classified) if classified else ContentKind.UNKNOWN
        except Exception as e:
            self._logger.warning(
                "classification_failed",
                request_id=request.id,
                error=str(e),
            )
            return ContentKind.UNKNOWN

    def augment(
        self,
        base_agents: Sequence[str],
        request: VerificationRequest,
        content_kind: ContentKind,
    ) -> List[str]:
        """Add metadata-driven agents to the base list, first occurrence wins."""
        agents = list(dict.fromkeys(base_agents))
        metadata = request.metadata

        if metadata.language and metadata.language.lower() != self.default_language:
            agents.append(MULTILINGUAL)

        platform = (metadata.platform or "").lower()
        if content_kind == ContentKind.SOCIAL_MEDIA_POST or platform in SOCIAL_PLATFORMS:
            agents.append(SOCIAL_GRAPH)

        tags = {tag.lower() for tag in metadata.tags}
        if content_kind == ContentKind.EDUCATIONAL_CONTENT or tags & EDUCATIONAL_TAGS:
            agents.append(EDUCATIONAL_CONTENT)

        return list(dict.fromkeys(agents))

    async def filter_candidates(
        self,
        agent_ids: Sequence[str],
        content_kind: ContentKind,
    ) -> List[str]:
        """Keep agents that are registered, available and support the kind."""
        agents = [self.registry.get_agent(agent_id) for agent_id in agent_ids]
        supporting = [a for a in agents if a is not None and a.supports(content_kind)]

        availability = await asyncio.gather(
            *(agent.is_available() for agent in supporting),
            return_exceptions=True,
        )

        selected = []
        for agent, available in zip(supporting, availability):
            if isinstance(available, Exception):
                self._logger.warning(
                    "availability_check_failed",
                    agent_id=agent.agent_id,
                    error=str(available),
                )
                continue
            if available:
                selected.append(agent.agent_id)
        return selected

    def determine_execution_order(self, agent_ids: Sequence[str]) -> List[str]:
        """Topologically order agents so every dependency precedes its dependents.

        Iterative depth-first search with visiting/visited sets. Only
        dependencies inside the selection are followed.

        Raises:
            CircularDependencyError: If a dependency cycle is found.
        """
        selected = list(dict.fromkeys(agent_ids))
        members = set(selected)
        visited: set = set()
        visiting: set = set()
        order: List[str] = []

        def deps_of(agent_id: str) -> List[str]:
            return [d for d in self.dependencies.get(agent_id, []) if d in members]

        for root in selected:
            if root in visited:
                continue
            visiting.add(root)
            stack = [(root, iter(deps_of(root)))]

            while stack:
                node, pending = stack[-1]
                for dep in pending:
                    if dep in visiting:
                        raise CircularDependencyError(dep)
                    if dep not in visited:
                        visiting.add(dep)
                        stack.append((dep, iter(deps_of(dep))))
                        break
                else:
                    stack.pop()
                    visiting.discard(node)
                    visited.add(node)
                    order.append(node)

        return order

    def estimate_processing_time(self, agent_ids: Sequence[str], priority: Priority) -> int:
        """Estimated wall time in ms: summed max processing times x priority multiplier x overhead."""
        total = 0
        for agent_id in agent_ids:
            agent = self.registry.get_agent(agent_id)
            if agent is not None:
                total += agent.max_processing_time

        multiplier = PRIORITY_TIME_MULTIPLIERS.get(Priority(priority).value, 1.0)
        # Rounding strips float noise before the ceiling
        return math.ceil(round(total * multiplier * ROUTING_OVERHEAD_FACTOR, 6))

    def _build_reasoning(
        self,
        content_kind: ContentKind,
        selected: Sequence[str],
        execution_order: Sequence[str],
        request: VerificationRequest,
    ) -> str:
        metadata = request.metadata
        reasons = [f"Content kind determined as '{content_kind.value}', requiring specialized analysis"]

        if content_kind != request.content_kind:
            reasons.append(f"Reclassified from '{request.content_kind.value}'")
        if metadata.language and metadata.language.lower() != self.default_language:
            reasons.append(f"Non-{self.default_language} content ({metadata.language}) requires multilingual analysis")
        if metadata.platform:
            reasons.append(f"Platform-specific analysis needed for {metadata.platform}")
        if not selected:
            reasons.append("No registered agent is available for this content kind")
        elif len(selected) > 1:
            reasons.append("Multi-agent approach selected for comprehensive verification")

        reasons.append(f"Execution order: {' -> '.join(execution_order)}")
        return ". ".join(reasons)

    def get_routing_stats(self) -> Dict[str, Any]:
        """Routing tables and registered agents for monitoring."""
        return {
            "supported_content_kinds": list(self.content_kind_agents.keys()),
            "registered_agents": self.registry.get_agent_ids(),
            "routing_rules": {k: list(v) for k, v in self.content_kind_agents.items()},
            "dependencies": {k: list(v) for k, v in self.dependencies.items()},
        }
