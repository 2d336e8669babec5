"""Tests for request, response, workflow and health schemas."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from veda_orchestration.schemas import (
    AgentResponse,
    ContentKind,
    ContentMetadata,
    Evidence,
    EvidenceType,
    HealthStats,
    Priority,
    Verdict,
    VerificationRequest,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowStep,
)


class TestVerificationRequest:
    """Request construction and validation."""

    def test_defaults(self):
        request = VerificationRequest(content="Water boils at 100C at sea level.")

        assert request.id.startswith("req-")
        assert request.content_kind == ContentKind.UNKNOWN
        assert request.priority == Priority.MEDIUM
        assert request.metadata == ContentMetadata()
        assert request.created_at.tzinfo is not None

    def test_ids_are_unique(self):
        first = VerificationRequest(content="a")
        second = VerificationRequest(content="a")
        assert first.id != second.id

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_empty_content_rejected(self, content):
        with pytest.raises(ValidationError):
            VerificationRequest(content=content)

    def test_metadata_from_dict(self):
        request = VerificationRequest(
            content="Post text",
            metadata={"language": "es", "platform": "twitter", "tags": ["politics"]},
        )
        assert request.metadata.language == "es"
        assert request.metadata.platform == "twitter"
        assert request.metadata.tags == ["politics"]

    def test_request_is_immutable(self):
        request = VerificationRequest(content="x")
        with pytest.raises(ValidationError):
            request.content = "y"


class TestAgentResponse:
    """Response and evidence validation."""

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            AgentResponse(agent_id="a", verdict=Verdict.VERIFIED_TRUE, confidence=1.2)
        with pytest.raises(ValidationError):
            AgentResponse(agent_id="a", verdict=Verdict.VERIFIED_TRUE, confidence=-0.1)

    def test_evidence_reliability_bounds(self):
        with pytest.raises(ValidationError):
            Evidence(type=EvidenceType.SOURCE, title="t", reliability=1.5)

    def test_verdict_values(self):
        assert {v.value for v in Verdict} == {
            "verified_true",
            "verified_false",
            "misleading",
            "unverified",
            "insufficient_evidence",
            "error",
        }


class TestWorkflowExecution:
    """Helpers on the workflow state model."""

    def _execution(self) -> WorkflowExecution:
        return WorkflowExecution(
            id="workflow-1",
            request_id="req-1",
            steps=[
                WorkflowStep(id="s1", agent_id="a", timeout=100),
                WorkflowStep(id="s2", agent_id="b", timeout=100, dependencies=["a"]),
            ],
        )

    def test_agent_errors_excludes_workflow_key(self):
        execution = self._execution()
        execution.errors = {"a": "boom", "workflow": "Circular dependency detected in workflow"}

        assert execution.agent_errors() == {"a": "boom"}

    def test_get_step(self):
        execution = self._execution()
        assert execution.get_step("b").dependencies == ["a"]
        assert execution.get_step("missing") is None

    def test_duration(self):
        execution = self._execution()
        assert execution.duration_ms is None

        execution.end_time = execution.start_time + timedelta(milliseconds=250)
        assert execution.duration_ms == pytest.approx(250.0)

    def test_terminal_states(self):
        assert WorkflowStatus.COMPLETED.is_terminal
        assert WorkflowStatus.FAILED.is_terminal
        assert WorkflowStatus.CANCELLED.is_terminal
        assert not WorkflowStatus.RUNNING.is_terminal
        assert not WorkflowStatus.PENDING.is_terminal

    def test_step_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            WorkflowStep(id="s", agent_id="a", timeout=0)


class TestHealthStats:
    def test_rates_without_traffic(self):
        stats = HealthStats()
        assert stats.success_rate == 0.0
        assert stats.error_rate == 0.0

    def test_rates(self):
        stats = HealthStats(total_requests=4, successful_requests=3, failed_requests=1)
        assert stats.success_rate == 0.75
        assert stats.error_rate == 0.25
