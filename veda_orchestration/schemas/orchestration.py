"""Orchestrator-level result and status schemas."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from veda_orchestration.schemas.aggregation import AggregationResult
from veda_orchestration.schemas.decision import DecisionResult
from veda_orchestration.schemas.workflow import RoutingDecision


class OrchestrationResult(BaseModel):
    """Outcome of one end-to-end verification.

    success is False whenever no decision could be produced; error then
    explains why.
    """

    success: bool
    request_id: str = ""
    decision: Optional[DecisionResult] = None
    aggregation: Optional[AggregationResult] = None
    routing: Optional[RoutingDecision] = None
    workflow_id: Optional[str] = None
    error: Optional[str] = None
    processing_time: float = Field(default=0.0, description="Milliseconds")
    cached: bool = False


class VerificationState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationStatus(BaseModel):
    request_id: str
    status: VerificationState
    progress: Optional[int] = Field(default=None, ge=0, le=100, description="Percent of agents settled")
    workflow_id: Optional[str] = None
