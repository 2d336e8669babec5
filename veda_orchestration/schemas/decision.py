"""Decision schemas: final verdict, certainty and risk assessment."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from veda_orchestration.schemas.response import Evidence, Verdict


class CertaintyLevel(str, Enum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class ConsensusLabel(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    NONE = "none"


class RiskAssessment(BaseModel):
    level: RiskLevel = RiskLevel.LOW
    factors: list[str] = Field(default_factory=list)
    mitigation: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, description="Aggregated confidence the risk was assessed at")


class AgentConsensus(BaseModel):
    """Count-based (unweighted) agreement summary."""

    majority_verdict: Verdict = Verdict.UNVERIFIED
    agreement_level: float = Field(default=0.0, ge=0.0, le=1.0)
    dissenting_agents: list[str] = Field(default_factory=list)
    consensus_strength: ConsensusLabel = ConsensusLabel.NONE


class DecisionMetadata(BaseModel):
    decision_method: str = "weighted_ensemble"
    consensus_strength: float = 0.0
    evidence_quality: float = 0.0
    processing_time: float = 0.0


class DecisionResult(BaseModel):
    """Final, defensible decision handed to the report layer."""

    final_verdict: Verdict
    confidence: float = Field(..., ge=0.0, le=1.0)
    certainty: CertaintyLevel
    reasoning: str = ""
    recommendations: list[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    agent_consensus: AgentConsensus = Field(default_factory=AgentConsensus)
    evidence: list[Evidence] = Field(default_factory=list)
    processing_time: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: DecisionMetadata = Field(default_factory=DecisionMetadata)
