"""Shared fixtures: a scriptable in-process agent and request helpers."""

import asyncio
from typing import List, Optional

import pytest

from veda_orchestration.agents.base_agent import SpecializedAgent
from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.schemas.request import ContentKind, Priority, VerificationRequest
from veda_orchestration.schemas.response import AgentResponse, Evidence, EvidenceType, Verdict


class FakeAgent(SpecializedAgent):
    """Agent returning a fixed verdict, optionally slow, failing or offline.

    fail_times makes the first N calls raise before answering normally;
    fail=True makes every call raise.
    """

    def __init__(
        self,
        agent_id: str,
        verdict: Verdict = Verdict.VERIFIED_TRUE,
        confidence: float = 0.85,
        evidence: Optional[List[Evidence]] = None,
        delay: float = 0.0,
        fail: bool = False,
        fail_times: int = 0,
        available: bool = True,
        supported_content_kinds=None,
        max_processing_time: int = 1000,
        tracker: Optional[List[tuple]] = None,
    ):
        super().__init__(
            agent_id=agent_id,
            name=f"Fake {agent_id}",
            supported_content_kinds=supported_content_kinds,
            max_processing_time=max_processing_time,
        )
        self.verdict = verdict
        self.confidence = confidence
        self.evidence = evidence or []
        self.delay = delay
        self.fail = fail
        self.fail_times = fail_times
        self.available = available
        self.calls = 0
        self.shut_down = False
        self.tracker = tracker

    async def analyze(self, request: VerificationRequest) -> AgentResponse:
        self.calls += 1
        if self.tracker is not None:
            self.tracker.append(("start", self.agent_id))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            if self.tracker is not None:
                self.tracker.append(("end", self.agent_id))
        if self.fail or self.calls <= self.fail_times:
            raise RuntimeError(f"{self.agent_id} exploded")
        return AgentResponse(
            agent_id=self.agent_id,
            agent_name=self.name,
            verdict=self.verdict,
            confidence=self.confidence,
            reasoning=f"{self.agent_id} says {self.verdict.value}",
            evidence=list(self.evidence),
        )

    async def is_available(self) -> bool:
        return self.available

    async def shutdown(self) -> None:
        self.shut_down = True


def source_evidence(title: str, reliability: float = 0.8) -> Evidence:
    return Evidence(type=EvidenceType.SOURCE, title=title, reliability=reliability)


@pytest.fixture
def fake_agent():
    """Factory for FakeAgent instances."""
    return FakeAgent


@pytest.fixture
def evidence_factory():
    return source_evidence


@pytest.fixture
def registry() -> AgentRegistry:
    return AgentRegistry()


@pytest.fixture
def make_request():
    def _make(
        content: str = "The city council approved the new budget on Monday.",
        content_kind: ContentKind = ContentKind.NEWS_ARTICLE,
        priority: Priority = Priority.MEDIUM,
        **metadata,
    ) -> VerificationRequest:
        return VerificationRequest(
            content=content,
            content_kind=content_kind,
            priority=priority,
            metadata=metadata,
        )

    return _make
