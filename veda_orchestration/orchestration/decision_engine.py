"""Ensemble decision layer on top of the aggregated consensus.

Scores used throughout:
- consensus strength: dominant verdict weight / total weight, scaled down
  when fewer than three agents contributed
- evidence quality: 0.5 x mean reliability + 0.3 x type diversity (4 types
  saturate) + 0.2 x share of evidence newer than 30 days
- certainty: 0.4 x confidence + 0.4 x consensus + 0.2 x evidence, bucketed

The engine never raises; an error aggregation or an internal failure yields
a degenerate decision with zero confidence.
"""

import time
from datetime import timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from veda_orchestration.schemas.aggregation import AggregationResult
from veda_orchestration.schemas.decision import (
    AgentConsensus,
    CertaintyLevel,
    ConsensusLabel,
    DecisionMetadata,
    DecisionResult,
    RiskAssessment,
    RiskLevel,
)
from veda_orchestration.schemas.request import VerificationRequest
from veda_orchestration.schemas.response import Evidence, Verdict
from veda_orchestration.utils.clock import as_utc, utcnow
from veda_orchestration.utils.logging import get_structured_logger

EVIDENCE_RECENCY = timedelta(days=30)

CERTAINTY_MULTIPLIERS: dict[CertaintyLevel, float] = {
    CertaintyLevel.VERY_HIGH: 1.0,
    CertaintyLevel.HIGH: 0.95,
    CertaintyLevel.MEDIUM: 0.85,
    CertaintyLevel.LOW: 0.7,
    CertaintyLevel.VERY_LOW: 0.5,
}

VERDICT_RECOMMENDATIONS: dict[Verdict, list[str]] = {
    Verdict.VERIFIED_FALSE: [
        "Content appears to be false or misleading",
        "Do not share this content",
    ],
    Verdict.VERIFIED_TRUE: ["Content appears to be accurate"],
    Verdict.MISLEADING: [
        "Content contains misleading information",
        "Share with caution and context",
    ],
    Verdict.UNVERIFIED: [
        "Unable to verify content accuracy",
        "Seek additional sources before sharing",
    ],
    Verdict.INSUFFICIENT_EVIDENCE: [
        "Insufficient evidence for verification",
        "Manual fact-checking recommended",
    ],
    Verdict.ERROR: [
        "Verification could not be completed",
        "Retry verification later",
    ],
}


class CertaintyThresholds(BaseModel):
    very_high: float = 0.9
    high: float = 0.75
    medium: float = 0.6
    low: float = 0.4


class StrengthThresholds(BaseModel):
    strong: float = 0.8
    moderate: float = 0.6
    weak: float = 0.4


class RiskThresholds(BaseModel):
    high_confidence_false: float = 0.8
    low_confidence_true: float = 0.6
    conflicting_evidence: float = 0.7
    min_successful_agents: int = 2
    independent_verification: float = 0.6


class DecisionConfig(BaseModel):
    confidence_thresholds: CertaintyThresholds = Field(default_factory=CertaintyThresholds)
    consensus_thresholds: StrengthThresholds = Field(default_factory=StrengthThresholds)
    evidence_thresholds: StrengthThresholds = Field(default_factory=StrengthThresholds)
    risk_factors: RiskThresholds = Field(default_factory=RiskThresholds)


class DecisionEngine:
    """Turn an AggregationResult into a final, explained DecisionResult."""

    def __init__(self, config: Optional[DecisionConfig] = None, clock=None) -> None:
        """Initialize DecisionEngine.

        Args:
            config: Thresholds; defaults when omitted.
            clock: Callable returning an aware "now", used for evidence recency.
        """
        self.config = config or DecisionConfig()
        self._clock = clock or utcnow
        self._logger = get_structured_logger(__name__, component="DecisionEngine")

    def decide(self, aggregation: AggregationResult, request: VerificationRequest) -> DecisionResult:
        """Make the final decision for one request."""
        start = time.perf_counter()

        if aggregation.consensus_verdict == Verdict.ERROR:
            return self._degenerate(aggregation, aggregation.reasoning or "No successful agent responses", start)

        try:
            decision = self._decide(aggregation, start)
        except Exception as e:
            self._logger.error("decision_failed", request_id=request.id, error=str(e), exc_info=True)
            return self._degenerate(aggregation, f"Decision engine failure: {e}", start)

        self._logger.info(
            "decision_made",
            request_id=request.id,
            verdict=decision.final_verdict.value,
            confidence=round(decision.confidence, 4),
            certainty=decision.certainty.value,
            risk=decision.risk_assessment.level.value,
            method=decision.metadata.decision_method,
        )
        return decision

    def _decide(self, aggregation: AggregationResult, start: float) -> DecisionResult:
        consensus_strength = self.consensus_strength(aggregation)
        evidence_quality = self.evidence_quality(aggregation.evidence)
        certainty = self.certainty_level(aggregation.confidence, consensus_strength, evidence_quality)
        verdict = self.ensemble_vote(aggregation, consensus_strength, evidence_quality)
        confidence = self.final_confidence(aggregation.confidence, consensus_strength, evidence_quality, certainty)
        risk = self.assess_risk(aggregation, verdict, confidence)

        processing_time = (time.perf_counter() - start) * 1000
        return DecisionResult(
            final_verdict=verdict,
            confidence=confidence,
            certainty=certainty,
            reasoning=self._build_reasoning(aggregation, verdict, certainty, consensus_strength, evidence_quality),
            recommendations=self.recommendations(verdict, certainty, risk, aggregation),
            risk_assessment=risk,
            agent_consensus=self.agent_consensus(aggregation),
            evidence=list(aggregation.evidence),
            processing_time=processing_time,
            metadata=DecisionMetadata(
                decision_method=self.decision_method(aggregation),
                consensus_strength=consensus_strength,
                evidence_quality=evidence_quality,
                processing_time=processing_time,
            ),
        )

    def consensus_strength(self, aggregation: AggregationResult) -> float:
        contributions = aggregation.agent_contributions
        if not contributions:
            return 0.0

        group_weights: Dict[Verdict, float] = {}
        for c in contributions:
            group_weights[c.verdict] = group_weights.get(c.verdict, 0.0) + c.weight

        total = sum(group_weights.values())
        if total <= 0:
            return 0.0

        return (max(group_weights.values()) / total) * min(1.0, len(contributions) / 3)

    def evidence_quality(self, evidence: List[Evidence]) -> float:
        if not evidence:
            return 0.0

        mean_reliability = sum(e.reliability for e in evidence) / len(evidence)
        diversity = min(1.0, len({e.type for e in evidence}) / 4)

        cutoff = self._clock() - EVIDENCE_RECENCY
        recent = sum(1 for e in evidence if e.timestamp is None or as_utc(e.timestamp) >= cutoff)

        return 0.5 * mean_reliability + 0.3 * diversity + 0.2 * (recent / len(evidence))

    def certainty_level(self, confidence: float, consensus_strength: float, evidence_quality: float) -> CertaintyLevel:
        score = 0.4 * confidence + 0.4 * consensus_strength + 0.2 * evidence_quality
        t = self.config.confidence_thresholds

        if score >= t.very_high:
            return CertaintyLevel.VERY_HIGH
        if score >= t.high:
            return CertaintyLevel.HIGH
        if score >= t.medium:
            return CertaintyLevel.MEDIUM
        if score >= t.low:
            return CertaintyLevel.LOW
        return CertaintyLevel.VERY_LOW

    def ensemble_vote(
        self,
        aggregation: AggregationResult,
        consensus_strength: float,
        evidence_quality: float,
    ) -> Verdict:
        """Accept the aggregated consensus or downgrade it to unverified."""
        consensus = self.config.consensus_thresholds
        evidence = self.config.evidence_thresholds
        confidence = self.config.confidence_thresholds

        if consensus_strength >= consensus.strong and evidence_quality >= evidence.strong:
            return aggregation.consensus_verdict
        if aggregation.confidence >= confidence.very_high:
            return aggregation.consensus_verdict
        if consensus_strength >= consensus.moderate and evidence_quality >= evidence.strong:
            return aggregation.consensus_verdict
        if evidence_quality >= evidence.strong and aggregation.confidence >= confidence.medium:
            return aggregation.consensus_verdict
        if consensus_strength < consensus.weak or evidence_quality < evidence.weak:
            return Verdict.UNVERIFIED
        return aggregation.consensus_verdict

    def final_confidence(
        self,
        base_confidence: float,
        consensus_strength: float,
        evidence_quality: float,
        certainty: CertaintyLevel,
    ) -> float:
        confidence = base_confidence

        if consensus_strength >= self.config.consensus_thresholds.strong:
            confidence *= 1.1
        elif consensus_strength < self.config.consensus_thresholds.weak:
            confidence *= 0.8

        if evidence_quality >= self.config.evidence_thresholds.strong:
            confidence *= 1.05
        elif evidence_quality < self.config.evidence_thresholds.weak:
            confidence *= 0.9

        confidence *= CERTAINTY_MULTIPLIERS[certainty]
        return min(1.0, max(0.0, confidence))

    def assess_risk(self, aggregation: AggregationResult, verdict: Verdict, confidence: float) -> RiskAssessment:
        risk = self.config.risk_factors
        factors: List[str] = []
        mitigation: List[str] = []

        if verdict == Verdict.VERIFIED_FALSE and confidence > risk.high_confidence_false:
            factors.append("High confidence false claim detection")
        if verdict == Verdict.VERIFIED_TRUE and confidence < risk.low_confidence_true:
            factors.append("Low confidence true claim verification")
        if confidence > risk.conflicting_evidence and any(
            c.verdict != verdict for c in aggregation.agent_contributions
        ):
            factors.append("Conflicting agent opinions")
        if aggregation.metadata.successful_agents < risk.min_successful_agents:
            factors.append("Limited agent consensus")

        level = RiskLevel.HIGH if factors else RiskLevel.LOW

        if level.rank >= RiskLevel.HIGH.rank:
            mitigation.append("Manual review recommended")
            mitigation.append("Additional verification sources needed")
        if confidence < risk.independent_verification:
            mitigation.append("User should verify independently")
        if aggregation.metadata.failed_agents > 0:
            mitigation.append("Retry with additional agents")

        return RiskAssessment(
            level=level,
            factors=factors,
            mitigation=mitigation,
            confidence=aggregation.confidence,
        )

    @staticmethod
    def agent_consensus(aggregation: AggregationResult) -> AgentConsensus:
        """Count-based agreement, independent of weights."""
        contributions = aggregation.agent_contributions
        if not contributions:
            return AgentConsensus()

        counts: Dict[Verdict, int] = {}
        for c in contributions:
            counts[c.verdict] = counts.get(c.verdict, 0) + 1

        # First verdict reaching the top count wins, contributions are score-sorted
        majority = max(counts, key=lambda v: counts[v])
        agreement = counts[majority] / len(contributions)

        if agreement >= 0.8:
            label = ConsensusLabel.STRONG
        elif agreement >= 0.6:
            label = ConsensusLabel.MODERATE
        elif agreement >= 0.4:
            label = ConsensusLabel.WEAK
        else:
            label = ConsensusLabel.NONE

        return AgentConsensus(
            majority_verdict=majority,
            agreement_level=agreement,
            dissenting_agents=[c.agent_id for c in contributions if c.verdict != majority],
            consensus_strength=label,
        )

    def recommendations(
        self,
        verdict: Verdict,
        certainty: CertaintyLevel,
        risk: RiskAssessment,
        aggregation: AggregationResult,
    ) -> List[str]:
        recommendations = list(VERDICT_RECOMMENDATIONS.get(verdict, []))

        if certainty in (CertaintyLevel.LOW, CertaintyLevel.VERY_LOW):
            recommendations.append("Result has low confidence - verify independently")
        if risk.level.rank >= RiskLevel.HIGH.rank:
            recommendations.append("High risk of error - manual review required")
        if aggregation.metadata.failed_agents > 0:
            recommendations.append("Some analysis agents failed - retry recommended")

        return recommendations

    def decision_method(self, aggregation: AggregationResult) -> str:
        metadata = aggregation.metadata
        if metadata.consensus_strength >= self.config.consensus_thresholds.strong:
            return "strong_consensus"
        if metadata.evidence_quality >= self.config.evidence_thresholds.strong:
            return "evidence_based"
        if aggregation.confidence >= self.config.confidence_thresholds.high:
            return "high_confidence"
        return "weighted_ensemble"

    def _build_reasoning(
        self,
        aggregation: AggregationResult,
        verdict: Verdict,
        certainty: CertaintyLevel,
        consensus_strength: float,
        evidence_quality: float,
    ) -> str:
        consensus = self.config.consensus_thresholds
        evidence = self.config.evidence_thresholds
        reasons = [f"Final verdict: {verdict.value} ({certainty.value} certainty)"]

        if consensus_strength >= consensus.strong:
            reasons.append("Strong consensus among agents")
        elif consensus_strength >= consensus.moderate:
            reasons.append("Moderate consensus among agents")
        else:
            reasons.append("Weak consensus - result should be interpreted cautiously")

        if evidence_quality >= evidence.strong:
            reasons.append("High-quality evidence supporting the decision")
        elif evidence_quality >= evidence.moderate:
            reasons.append("Moderate evidence quality")
        else:
            reasons.append("Limited evidence available")

        metadata = aggregation.metadata
        reasons.append(f"{metadata.successful_agents}/{metadata.total_agents} agents successfully analyzed the content")
        return ". ".join(reasons)

    def _degenerate(self, aggregation: AggregationResult, message: str, start: float) -> DecisionResult:
        verdict = aggregation.consensus_verdict
        if verdict not in (Verdict.ERROR, Verdict.INSUFFICIENT_EVIDENCE):
            verdict = Verdict.ERROR

        risk = RiskAssessment(
            level=RiskLevel.HIGH,
            factors=["Limited agent consensus"],
            mitigation=["Manual review recommended", "Retry with additional agents"],
            confidence=0.0,
        )
        processing_time = (time.perf_counter() - start) * 1000

        self._logger.warning("degenerate_decision", verdict=verdict.value, reason=message)
        return DecisionResult(
            final_verdict=verdict,
            confidence=0.0,
            certainty=CertaintyLevel.VERY_LOW,
            reasoning=f"No decision could be made: {message}",
            recommendations=list(VERDICT_RECOMMENDATIONS[verdict]) + ["High risk of error - manual review required"],
            risk_assessment=risk,
            agent_consensus=AgentConsensus(),
            evidence=list(aggregation.evidence),
            processing_time=processing_time,
            metadata=DecisionMetadata(decision_method="degenerate", processing_time=processing_time),
        )

    def get_config(self) -> DecisionConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, **changes) -> DecisionConfig:
        self.config = DecisionConfig.model_validate({**self.config.model_dump(), **changes})
        return self.get_config()
