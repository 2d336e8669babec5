"""Schema package for requests, agent opinions, workflows and decisions.

All models are Pydantic v2. Requests are frozen; workflow executions and
health records are mutated only by the component that owns them.

Usage:
    from veda_orchestration.schemas import VerificationRequest, ContentKind
    request = VerificationRequest(content="...", content_kind=ContentKind.NEWS_ARTICLE)
"""

from veda_orchestration.schemas.request import (
    ContentKind,
    ContentMetadata,
    Priority,
    VerificationRequest,
)
from veda_orchestration.schemas.response import (
    AgentResponse,
    Evidence,
    EvidenceType,
    Verdict,
)
from veda_orchestration.schemas.workflow import (
    RoutingDecision,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
)
from veda_orchestration.schemas.aggregation import (
    AgentContribution,
    AggregationMetadata,
    AggregationResult,
)
from veda_orchestration.schemas.decision import (
    AgentConsensus,
    CertaintyLevel,
    ConsensusLabel,
    DecisionMetadata,
    DecisionResult,
    RiskAssessment,
    RiskLevel,
)
from veda_orchestration.schemas.health import (
    AgentHealth,
    AlertSeverity,
    AlertType,
    HealthAlert,
    HealthMetric,
    HealthStats,
    HealthStatus,
    SystemHealth,
)
from veda_orchestration.schemas.events import EventType, OrchestrationEvent
from veda_orchestration.schemas.orchestration import (
    OrchestrationResult,
    VerificationState,
    VerificationStatus,
)

__all__ = [
    "ContentKind",
    "ContentMetadata",
    "Priority",
    "VerificationRequest",
    "AgentResponse",
    "Evidence",
    "EvidenceType",
    "Verdict",
    "RoutingDecision",
    "WorkflowExecution",
    "WorkflowStatus",
    "WorkflowStep",
    "AgentContribution",
    "AggregationMetadata",
    "AggregationResult",
    "AgentConsensus",
    "CertaintyLevel",
    "ConsensusLabel",
    "DecisionMetadata",
    "DecisionResult",
    "RiskAssessment",
    "RiskLevel",
    "AgentHealth",
    "AlertSeverity",
    "AlertType",
    "HealthAlert",
    "HealthMetric",
    "HealthStats",
    "HealthStatus",
    "SystemHealth",
    "EventType",
    "OrchestrationEvent",
    "OrchestrationResult",
    "VerificationState",
    "VerificationStatus",
]
