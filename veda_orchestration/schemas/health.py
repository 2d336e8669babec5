"""Agent health, metric and alert schemas."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class AgentHealth(BaseModel):
    """Point-in-time health of one agent.

    health_score is filled in by the health monitor; agents reporting their
    own health may leave it unset.
    """

    agent_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    response_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    error_count: int = Field(default=0, ge=0)
    total_requests: int = Field(default=0, ge=0)
    last_check: datetime = Field(default_factory=_utcnow)
    health_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class HealthMetric(BaseModel):
    """One observed outcome for one agent (real traffic or a poll)."""

    agent_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    response_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")
    success: bool
    error: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class HealthStats(BaseModel):
    """Incrementally maintained aggregate stats for one agent."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    average_confidence: float = 0.0
    uptime: float = 0.0
    last_check: datetime = Field(default_factory=_utcnow)
    health_score: float = 1.0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class AlertType(str, Enum):
    PERFORMANCE = "performance"
    AVAILABILITY = "availability"
    ERROR_RATE = "error_rate"
    RESPONSE_TIME = "response_time"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HealthAlert(BaseModel):
    id: str = Field(default_factory=lambda: f"alert-{uuid.uuid4().hex[:12]}")
    agent_id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class SystemHealth(BaseModel):
    overall_status: HealthStatus
    healthy_agents: int = 0
    total_agents: int = 0
    active_alerts: int = 0
    average_health_score: float = 0.0
