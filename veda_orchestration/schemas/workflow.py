"""Routing and workflow execution schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from veda_orchestration.schemas.request import ContentKind, Priority
from veda_orchestration.schemas.response import AgentResponse


class WorkflowStatus(str, Enum):
    """Workflow lifecycle: pending -> running -> terminal."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self not in (WorkflowStatus.PENDING, WorkflowStatus.RUNNING)


class RoutingDecision(BaseModel):
    """Router output consumed by the workflow manager."""

    selected_agents: list[str] = Field(default_factory=list)
    execution_order: list[str] = Field(default_factory=list)
    estimated_time: int = Field(default=0, ge=0, description="Milliseconds")
    content_kind: ContentKind = Field(default=ContentKind.UNKNOWN)
    reasoning: str = Field(default="")


class WorkflowStep(BaseModel):
    """Scheduling unit for one agent inside one workflow."""

    id: str
    agent_id: str
    dependencies: list[str] = Field(default_factory=list)
    timeout: int = Field(..., gt=0, description="Per-attempt timeout in milliseconds")
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    priority: Priority = Field(default=Priority.MEDIUM)


class WorkflowExecution(BaseModel):
    """State of one workflow run.

    Once status is terminal every selected agent is a key of exactly one of
    ``results`` or ``errors``. Planning failures are additionally recorded
    under the ``workflow`` key of ``errors``.
    """

    id: str
    request_id: str
    steps: list[WorkflowStep] = Field(default_factory=list)
    status: WorkflowStatus = Field(default=WorkflowStatus.PENDING)
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = Field(default=None)
    results: dict[str, AgentResponse] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def agent_ids(self) -> list[str]:
        return [step.agent_id for step in self.steps]

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def get_step(self, agent_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.agent_id == agent_id:
                return step
        return None

    def agent_errors(self) -> dict[str, str]:
        """Per-agent failures, without the workflow-level planning error."""
        return {k: v for k, v in self.errors.items() if k in set(self.agent_ids)}
