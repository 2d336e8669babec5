"""Aggregation schemas: per-agent contributions and the consensus result."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from veda_orchestration.schemas.response import AgentResponse, Evidence, Verdict


class AgentContribution(BaseModel):
    """Per-agent view used only inside aggregation and decision making."""

    agent_id: str
    agent_name: str = ""
    verdict: Verdict
    confidence: float = Field(..., ge=0.0, le=1.0)
    weight: float = Field(..., ge=0.0, description="Effective weight after health discount")
    weighted_score: float = Field(..., description="verdict score x confidence x weight")
    health_score: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    evidence: list[Evidence] = Field(default_factory=list)
    processing_time: float = 0.0


class AggregationMetadata(BaseModel):
    total_agents: int = 0
    successful_agents: int = 0
    failed_agents: int = 0
    average_confidence: float = 0.0
    consensus_strength: float = Field(default=0.0, description="Fraction sharing the modal verdict")
    evidence_quality: float = Field(default=0.0, description="Mean evidence reliability")
    processing_time: float = 0.0


class AggregationResult(BaseModel):
    """Consensus over all successful agent responses of one workflow.

    Attributes:
        consensus_verdict: Verdict of the largest-magnitude weighted group
        weighted_score: Summed weighted score of the consensus group (raw)
        confidence: Normalized and bucketed confidence 0.0-1.0
        evidence: Evidence merged by (type, title), most reliable first
        agent_contributions: Contributions sorted by weighted score desc
        agent_results: Successful responses the result was built from
        reasoning: Human-readable summary
    """

    consensus_verdict: Verdict
    weighted_score: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence: list[Evidence] = Field(default_factory=list)
    agent_contributions: list[AgentContribution] = Field(default_factory=list)
    agent_results: list[AgentResponse] = Field(default_factory=list)
    reasoning: str = ""
    processing_time: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: AggregationMetadata = Field(default_factory=AggregationMetadata)
