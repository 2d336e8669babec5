"""Agent opinion schemas: verdicts, evidence and per-agent responses."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Verdict(str, Enum):
    """Categorical judgment rendered by an agent or the decision engine."""

    VERIFIED_TRUE = "verified_true"
    VERIFIED_FALSE = "verified_false"
    MISLEADING = "misleading"
    UNVERIFIED = "unverified"
    INSUFFICIENT_EVIDENCE = "insufficient_evidence"
    ERROR = "error"


class EvidenceType(str, Enum):
    SOURCE = "source"
    FACT_CHECK = "fact_check"
    EXPERT_OPINION = "expert_opinion"
    DATA_ANALYSIS = "data_analysis"
    CROSS_REFERENCE = "cross_reference"


class Evidence(BaseModel):
    """Single piece of evidence backing an agent's verdict."""

    type: EvidenceType = Field(..., description="Evidence category")
    title: str = Field(..., description="Short title, part of the merge key")
    description: str = Field(default="")
    url: Optional[str] = Field(default=None)
    reliability: float = Field(..., ge=0.0, le=1.0, description="Reliability 0.0-1.0")
    timestamp: Optional[datetime] = Field(default=None, description="When the evidence was produced")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "fact_check",
                    "title": "Independent fact-check",
                    "description": "Claim rated false by two fact-checkers.",
                    "url": "https://example.org/fact-check/123",
                    "reliability": 0.85,
                }
            ]
        }
    }


class AgentResponse(BaseModel):
    """One agent's opinion about one request.

    Produced once per agent per request. processing_time is overwritten by
    the workflow manager with the measured wall time in milliseconds.
    """

    agent_id: str = Field(..., description="Registry id of the responding agent")
    agent_name: str = Field(default="")
    verdict: Verdict = Field(...)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = Field(default="")
    evidence: list[Evidence] = Field(default_factory=list)
    processing_time: float = Field(default=0.0, ge=0.0, description="Milliseconds")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)
