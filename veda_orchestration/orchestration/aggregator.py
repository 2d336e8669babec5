"""Weighted consensus over the agent responses of one workflow.

Each successful response becomes a contribution:

    effective_weight = configured_weight x ((1 - health_weight) + health_weight x health_score)
    weighted_score   = verdict_score x confidence x effective_weight

with verdict scores true +1, false -1, misleading -0.7 and 0 otherwise.
Contributions are grouped by verdict; the group with the largest summed
magnitude is the consensus unless it carries less than consensus_threshold
of the total weight, in which case the result is insufficient_evidence.

Usage:
    aggregator = ResultAggregator()
    result = aggregator.aggregate(execution, health_monitor.get_health_snapshot())
"""

import time
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from veda_orchestration.config.settings import settings
from veda_orchestration.schemas.aggregation import (
    AgentContribution,
    AggregationMetadata,
    AggregationResult,
)
from veda_orchestration.schemas.health import AgentHealth
from veda_orchestration.schemas.response import AgentResponse, Evidence, Verdict
from veda_orchestration.schemas.workflow import WorkflowExecution
from veda_orchestration.utils.logging import get_structured_logger

VERDICT_SCORES: dict[Verdict, float] = {
    Verdict.VERIFIED_TRUE: 1.0,
    Verdict.VERIFIED_FALSE: -1.0,
    Verdict.MISLEADING: -0.7,
    Verdict.UNVERIFIED: 0.0,
    Verdict.INSUFFICIENT_EVIDENCE: 0.0,
    Verdict.ERROR: 0.0,
}

DEFAULT_HEALTH_SCORE = 0.5
EVIDENCE_REPEAT_BOOST = 0.1
UNHEALTHY_CONTRIBUTOR = 0.5

_VERDICT_ORDER = {verdict: index for index, verdict in enumerate(Verdict)}


class ConfidenceThresholds(BaseModel):
    high: float = Field(default_factory=lambda: settings.confidence_high)
    medium: float = Field(default_factory=lambda: settings.confidence_medium)
    low: float = Field(default_factory=lambda: settings.confidence_low)


class AggregationConfig(BaseModel):
    """Tunable aggregation parameters, defaults from settings."""

    agent_weights: dict[str, float] = Field(default_factory=lambda: dict(settings.agent_weights))
    confidence_thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    consensus_threshold: float = Field(default_factory=lambda: settings.consensus_threshold, ge=0.0, le=1.0)
    health_weight: float = Field(default=0.2, ge=0.0, le=1.0, description="Share of the weight discounted by health")
    default_weight: float = Field(default=1.0, gt=0.0)


def verdict_score(verdict: Verdict) -> float:
    return VERDICT_SCORES.get(verdict, 0.0)


def health_score_from(health: AgentHealth) -> float:
    """Health score of a snapshot entry.

    Uses the monitor's score when present, else derives one from latency
    against 10 s, success rate and an error penalty saturating at 10 errors.
    """
    if health.health_score is not None:
        return health.health_score

    response_time_score = max(0.0, 1.0 - health.response_time / 10_000)
    error_penalty = max(0.0, 1.0 - health.error_count / 10)
    return (response_time_score + health.success_rate + error_penalty) / 3


class ResultAggregator:
    """Combine agent responses into one weighted consensus.

    The aggregator is pure with respect to its inputs: it never mutates
    the execution, the responses or their evidence.
    """

    def __init__(self, config: Optional[AggregationConfig] = None) -> None:
        self.config = config or AggregationConfig()
        self._logger = get_structured_logger(__name__, component="ResultAggregator")

    def aggregate(
        self,
        execution: WorkflowExecution,
        health_snapshot: Optional[Mapping[str, AgentHealth]] = None,
    ) -> AggregationResult:
        """Aggregate the successful responses of a terminal workflow.

        Args:
            execution: Workflow whose results are aggregated.
            health_snapshot: Health per agent id; missing agents score 0.5.

        Returns:
            AggregationResult; an "error" result with zero confidence when
            no agent succeeded.
        """
        start = time.perf_counter()
        health_snapshot = health_snapshot or {}
        responses = list(execution.results.values())
        failed = len(execution.agent_errors())

        if not responses:
            self._logger.warning(
                "no_successful_responses",
                workflow_id=execution.id,
                failed_agents=failed,
            )
            return self._error_result("No successful agent responses", failed)

        contributions = self.calculate_contributions(responses, health_snapshot)
        consensus, best_score = self.determine_consensus(contributions)
        confidence = self.normalize_confidence(best_score, contributions)
        evidence = self.merge_evidence(contributions)

        processing_time = (time.perf_counter() - start) * 1000
        consensus_strength = self.modal_fraction(responses)

        result = AggregationResult(
            consensus_verdict=consensus,
            weighted_score=best_score,
            confidence=confidence,
            evidence=evidence,
            agent_contributions=contributions,
            agent_results=responses,
            reasoning=self._build_reasoning(contributions, consensus, confidence),
            processing_time=processing_time,
            metadata=AggregationMetadata(
                total_agents=len(responses) + failed,
                successful_agents=len(responses),
                failed_agents=failed,
                average_confidence=sum(r.confidence for r in responses) / len(responses),
                consensus_strength=consensus_strength,
                evidence_quality=self.evidence_quality(evidence),
                processing_time=processing_time,
            ),
        )

        self._logger.info(
            "aggregation_complete",
            workflow_id=execution.id,
            verdict=consensus.value,
            confidence=round(confidence, 4),
            contributors=len(contributions),
            failed_agents=failed,
        )
        return result

    def calculate_contributions(
        self,
        responses: List[AgentResponse],
        health_snapshot: Mapping[str, AgentHealth],
    ) -> List[AgentContribution]:
        """Contributions sorted by weighted score, descending (ties by agent id)."""
        contributions = []
        health_weight = self.config.health_weight

        for response in responses:
            health = health_snapshot.get(response.agent_id)
            health_score = health_score_from(health) if health is not None else DEFAULT_HEALTH_SCORE
            weight = self.get_agent_weight(response.agent_id) * (
                (1.0 - health_weight) + health_weight * health_score
            )

            contributions.append(
                AgentContribution(
                    agent_id=response.agent_id,
                    agent_name=response.agent_name,
                    verdict=response.verdict,
                    confidence=response.confidence,
                    weight=weight,
                    weighted_score=verdict_score(response.verdict) * response.confidence * weight,
                    health_score=health_score,
                    reasoning=response.reasoning,
                    evidence=list(response.evidence),
                    processing_time=response.processing_time,
                )
            )

        return sorted(contributions, key=lambda c: (-c.weighted_score, c.agent_id))

    def determine_consensus(self, contributions: List[AgentContribution]) -> tuple[Verdict, float]:
        """Consensus verdict and the summed weighted score backing it.

        The score is 0.0 when the consensus falls back to
        insufficient_evidence.
        """
        group_scores: Dict[Verdict, float] = {}
        for contribution in contributions:
            group_scores[contribution.verdict] = group_scores.get(contribution.verdict, 0.0) + contribution.weighted_score

        best_verdict = max(
            group_scores,
            key=lambda v: (abs(group_scores[v]), -_VERDICT_ORDER[v]),
        )
        best_score = group_scores[best_verdict]

        total_weight = sum(c.weight for c in contributions)
        ratio = abs(best_score) / total_weight if total_weight > 0 else 0.0
        if ratio < self.config.consensus_threshold:
            self._logger.debug(
                "consensus_below_threshold",
                best_verdict=best_verdict.value,
                ratio=round(ratio, 4),
                threshold=self.config.consensus_threshold,
            )
            return Verdict.INSUFFICIENT_EVIDENCE, 0.0

        return best_verdict, best_score

    def normalize_confidence(self, weighted_score: float, contributions: List[AgentContribution]) -> float:
        """Map |consensus score| / total weight into a bucketed confidence."""
        total_weight = sum(c.weight for c in contributions)
        if total_weight <= 0:
            return 0.0

        normalized = abs(weighted_score) / total_weight
        thresholds = self.config.confidence_thresholds

        if normalized >= thresholds.high:
            return min(normalized, 1.0)
        if normalized >= thresholds.medium:
            return normalized * 0.8
        if normalized >= thresholds.low:
            return normalized * 0.6
        return normalized * 0.4

    @staticmethod
    def merge_evidence(contributions: List[AgentContribution]) -> List[Evidence]:
        """Merge evidence by (type, title); repeats add reliability instead of entries."""
        merged: Dict[tuple, Evidence] = {}
        for contribution in contributions:
            for item in contribution.evidence:
                key = (item.type, item.title)
                if key in merged:
                    existing = merged[key]
                    boosted = round(min(1.0, existing.reliability + EVIDENCE_REPEAT_BOOST), 10)
                    merged[key] = existing.model_copy(update={"reliability": boosted})
                else:
                    merged[key] = item.model_copy()

        return sorted(merged.values(), key=lambda e: e.reliability, reverse=True)

    @staticmethod
    def modal_fraction(responses: List[AgentResponse]) -> float:
        """Fraction of responses sharing the most common verdict."""
        if not responses:
            return 0.0
        counts: Dict[Verdict, int] = {}
        for response in responses:
            counts[response.verdict] = counts.get(response.verdict, 0) + 1
        return max(counts.values()) / len(responses)

    @staticmethod
    def evidence_quality(evidence: List[Evidence]) -> float:
        if not evidence:
            return 0.0
        return sum(e.reliability for e in evidence) / len(evidence)

    def _build_reasoning(
        self,
        contributions: List[AgentContribution],
        consensus: Verdict,
        confidence: float,
    ) -> str:
        thresholds = self.config.confidence_thresholds
        agreeing = sum(1 for c in contributions if c.verdict == consensus)
        reasons = [f"{agreeing}/{len(contributions)} agents reached consensus: {consensus.value}"]

        if confidence >= thresholds.high:
            reasons.append("High confidence in the result")
        elif confidence >= thresholds.medium:
            reasons.append("Medium confidence in the result")
        else:
            reasons.append("Low confidence - additional verification recommended")

        top = [c.agent_name or c.agent_id for c in contributions[:2]]
        if top:
            reasons.append(f"Primary analysis by: {', '.join(top)}")

        degraded = sum(1 for c in contributions if c.health_score < UNHEALTHY_CONTRIBUTOR)
        if degraded:
            reasons.append(f"Note: {degraded} agents had degraded performance")

        return ". ".join(reasons)

    def _error_result(self, message: str, failed: int) -> AggregationResult:
        return AggregationResult(
            consensus_verdict=Verdict.ERROR,
            weighted_score=0.0,
            confidence=0.0,
            reasoning=message,
            metadata=AggregationMetadata(total_agents=failed, failed_agents=failed),
        )

    def get_agent_weight(self, agent_id: str) -> float:
        return self.config.agent_weights.get(agent_id, self.config.default_weight)

    def update_agent_weights(self, performance: Mapping[str, Mapping[str, float]]) -> Dict[str, float]:
        """Nudge configured weights by observed performance, clamped to [0.5, 1.5].

        Args:
            performance: Per agent id, ``success_rate`` and ``avg_confidence``.

        Returns:
            The updated weights of the agents in ``performance``.
        """
        updated = {}
        for agent_id, data in performance.items():
            current = self.get_agent_weight(agent_id)
            score = (data.get("success_rate", 0.0) + data.get("avg_confidence", 0.0)) / 2
            new_weight = max(0.5, min(1.5, current * (0.8 + 0.4 * score)))
            self.config.agent_weights[agent_id] = new_weight
            updated[agent_id] = new_weight

        self._logger.info("agent_weights_updated", weights=updated)
        return updated

    def get_config(self) -> AggregationConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, **changes: Any) -> AggregationConfig:
        """Replace config fields; the result is validated like a new config."""
        self.config = AggregationConfig.model_validate({**self.config.model_dump(), **changes})
        return self.get_config()
