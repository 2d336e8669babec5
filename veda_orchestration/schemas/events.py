"""Event schema for the orchestration event stream."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    AGENT_RESPONSE = "agent_response"
    WORKFLOW_COMPLETED = "workflow_completed"
    ERROR = "error"
    HEALTH_UPDATE = "health_update"


class OrchestrationEvent(BaseModel):
    type: EventType
    request_id: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)
