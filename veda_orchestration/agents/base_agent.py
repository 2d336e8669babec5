"""Abstract base class for all verification agents."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from veda_orchestration.schemas.health import AgentHealth, HealthStatus
from veda_orchestration.schemas.request import ContentKind, VerificationRequest
from veda_orchestration.schemas.response import AgentResponse


class SpecializedAgent(ABC):
    """
    Abstract base class defining the contract every verification agent fulfils.

    An agent is an opaque capability: the orchestration layer only calls
    analyze(), get_health() and is_available(), and reads the static
    supported_content_kinds and max_processing_time to route requests.
    Concrete agents implement analyze(); the base class keeps simple
    request counters so get_health() works out of the box.

    Attributes:
        agent_id: Registry id (e.g. "content-analysis")
        name: Human-readable agent name
        supported_content_kinds: Content kinds this agent accepts
        max_processing_time: Expected worst-case processing time in ms
        logger: Loguru logger bound with agent context
        created_at: UTC timestamp of agent instantiation
    """

    def __init__(
        self,
        agent_id: str,
        name: str,
        supported_content_kinds: Optional[Iterable[ContentKind]] = None,
        max_processing_time: int = 15_000,
    ):
        """
        Initialize base agent with identity and routing attributes.

        Args:
            agent_id: Registry id, unique within one registry
            name: Human-readable agent name
            supported_content_kinds: Accepted kinds, all kinds when omitted
            max_processing_time: Expected worst-case processing time in ms
        """
        self.agent_id = agent_id
        self.name = name
        kinds = supported_content_kinds if supported_content_kinds is not None else list(ContentKind)
        self.supported_content_kinds = frozenset(ContentKind(k) for k in kinds)
        self.max_processing_time = max_processing_time
        self.logger = logger.bind(agent_id=agent_id, agent_name=name)
        self.created_at = datetime.now(timezone.utc)

        self._total_requests = 0
        self._error_count = 0
        self._last_response_time = 0.0
        self._last_check = self.created_at

    def supports(self, content_kind: ContentKind) -> bool:
        """Whether this agent declares support for a content kind."""
        return ContentKind(content_kind) in self.supported_content_kinds

    @abstractmethod
    async def analyze(self, request: VerificationRequest) -> AgentResponse:
        """
        Produce this agent's opinion about a request.

        Implementations raise on failure; the workflow manager owns retries
        and timeouts.

        Args:
            request: The verification request

        Returns:
            AgentResponse with verdict, confidence and evidence
        """
        pass

    async def get_health(self) -> AgentHealth:
        """
        Report self-observed health from the request counters.

        health_score is left unset; the health monitor computes it.
        """
        success_rate = 1.0
        if self._total_requests:
            success_rate = (self._total_requests - self._error_count) / self._total_requests

        status = HealthStatus.DEGRADED if self._error_count > 5 else HealthStatus.HEALTHY
        return AgentHealth(
            agent_id=self.agent_id,
            status=status,
            response_time=self._last_response_time,
            success_rate=success_rate,
            error_count=self._error_count,
            total_requests=self._total_requests,
            last_check=self._last_check,
        )

    async def is_available(self) -> bool:
        """Whether the agent can take work right now."""
        return True

    async def shutdown(self) -> None:
        """Release resources held by the agent. No-op by default."""
        pass

    def record_outcome(self, processing_time: float, success: bool) -> None:
        """Update the counters behind get_health() after one analyze() call."""
        self._total_requests += 1
        self._last_response_time = processing_time
        self._last_check = datetime.now(timezone.utc)
        if not success:
            self._error_count += 1

    def __repr__(self) -> str:
        return f"{type(self).__name__}(agent_id={self.agent_id!r})"
