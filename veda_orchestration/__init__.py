"""Multi-agent verification orchestration: routing, scheduling, consensus and decision."""

from veda_orchestration.agents import AgentRegistry, HttpAgent, SpecializedAgent
from veda_orchestration.orchestration import Orchestrator
from veda_orchestration.schemas import (
    ContentKind,
    DecisionResult,
    OrchestrationResult,
    Priority,
    Verdict,
    VerificationRequest,
)

__version__ = "0.1.0"

__all__ = [
    "AgentRegistry",
    "ContentKind",
    "DecisionResult",
    "HttpAgent",
    "OrchestrationResult",
    "Orchestrator",
    "Priority",
    "SpecializedAgent",
    "Verdict",
    "VerificationRequest",
]
