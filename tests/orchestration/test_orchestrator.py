"""End-to-end tests for the Orchestrator pipeline."""

import asyncio

import pytest

from veda_orchestration.orchestration.orchestrator import Orchestrator
from veda_orchestration.orchestration.router import RequestRouter
from veda_orchestration.orchestration.workflow_manager import WorkflowManager
from veda_orchestration.schemas.events import EventType
from veda_orchestration.schemas.orchestration import VerificationState
from veda_orchestration.schemas.request import ContentKind
from veda_orchestration.schemas.response import Verdict

AGENTS = ["x", "y", "z"]


class Ticker:
    """Settable monotonic clock for cache expiry."""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


async def no_sleep(delay: float) -> None:
    return None


def build(registry, **kwargs) -> Orchestrator:
    router = RequestRouter(
        registry,
        content_kind_agents={ContentKind.NEWS_ARTICLE.value: AGENTS},
        dependencies={},
    )
    manager = WorkflowManager(registry, max_retries=0, dependencies={}, sleep=no_sleep)
    kwargs.setdefault("cache_enabled", True)
    kwargs.setdefault("cache_ttl", 60)
    return Orchestrator(registry, router=router, workflow_manager=manager, **kwargs)


async def register_all(registry, fake_agent, evidence_factory, **agent_kwargs):
    agents = []
    for agent_id in AGENTS:
        agent = fake_agent(agent_id, evidence=[evidence_factory(f"Report {agent_id}")], **agent_kwargs)
        await registry.register_agent(agent)
        agents.append(agent)
    return agents


def capture(orchestrator: Orchestrator):
    events = []
    orchestrator.events.subscribe(events.append)
    return events


class TestVerification:
    @pytest.mark.asyncio
    async def test_successful_verification(self, registry, fake_agent, evidence_factory):
        await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)

        result = await orchestrator.verify_content(
            "The city council approved the new budget on Monday.",
            ContentKind.NEWS_ARTICLE,
        )

        assert result.success
        assert result.error is None
        assert not result.cached
        assert result.decision.final_verdict == Verdict.VERIFIED_TRUE
        assert result.aggregation.metadata.successful_agents == 3
        assert result.routing.selected_agents == AGENTS
        assert result.workflow_id is not None
        assert result.processing_time >= 0

    @pytest.mark.asyncio
    async def test_workflow_events_forwarded(self, registry, fake_agent, evidence_factory):
        await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)
        events = capture(orchestrator)

        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        await orchestrator.drain_events()

        types = [e.type for e in events]
        assert types[0] == EventType.WORKFLOW_STARTED
        assert types.count(EventType.AGENT_RESPONSE) == 3
        assert EventType.WORKFLOW_COMPLETED in types
        assert all(e.request_id == result.request_id for e in events)

    @pytest.mark.asyncio
    async def test_health_metrics_recorded(self, registry, fake_agent, evidence_factory):
        await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)

        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        for agent_id in AGENTS:
            stats = orchestrator.health_monitor.get_agent_stats(agent_id)
            assert stats.successful_requests == 1
            assert stats.average_confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_all_agents_failing(self, registry, fake_agent, evidence_factory):
        await register_all(registry, fake_agent, evidence_factory, fail=True)
        orchestrator = build(registry)
        events = capture(orchestrator)

        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        await orchestrator.drain_events()

        assert result.success
        assert result.decision.final_verdict == Verdict.ERROR
        assert result.decision.metadata.decision_method == "degenerate"
        assert result.aggregation.metadata.failed_agents == 3
        assert orchestrator.health_monitor.get_agent_stats("x").failed_requests == 1
        # Failures trip health alerts, which are re-published
        assert any(e.type == EventType.HEALTH_UPDATE for e in events)
        assert orchestrator.get_alerts()


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_candidates(self, registry, fake_agent):
        await registry.register_agent(fake_agent("x", available=False))
        orchestrator = build(registry)
        events = capture(orchestrator)

        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        await orchestrator.drain_events()

        assert not result.success
        assert "No suitable agents" in result.error
        assert result.decision is None
        assert [e.type for e in events] == [EventType.ERROR]
        assert orchestrator.get_stats()["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_invalid_content(self, registry):
        orchestrator = build(registry)

        result = await orchestrator.verify_content("   ", ContentKind.NEWS_ARTICLE)

        assert not result.success
        assert result.error.startswith("Invalid request")
        assert orchestrator.get_stats()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, registry, fake_agent):
        agent = fake_agent("x", available=False)
        await registry.register_agent(agent)
        orchestrator = build(registry)

        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        agent.available = True
        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        assert result.success
        assert not result.cached


class TestCache:
    @pytest.mark.asyncio
    async def test_repeat_request_hits_cache(self, registry, fake_agent, evidence_factory):
        agents = await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)

        first = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        second = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        assert second.cached
        assert second.request_id != first.request_id
        assert second.decision == first.decision
        assert all(agent.calls == 1 for agent in agents)

        stats = orchestrator.get_stats()
        assert stats["cache_hit_rate"] == 0.5
        assert stats["cache_size"] == 1
        assert stats["successful_requests"] == 1
        assert stats["agent_count"] == 3

    @pytest.mark.asyncio
    async def test_metadata_changes_the_key(self, registry, fake_agent, evidence_factory):
        agents = await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)

        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE, {"source": "a"})
        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE, {"source": "b"})

        assert not result.cached
        assert agents[0].calls == 2

    @pytest.mark.asyncio
    async def test_entries_expire(self, registry, fake_agent, evidence_factory):
        agents = await register_all(registry, fake_agent, evidence_factory)
        ticker = Ticker()
        orchestrator = build(registry, cache_ttl=10, time_fn=ticker)

        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        ticker.value = 5
        assert (await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)).cached
        ticker.value = 20
        assert not (await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)).cached
        assert agents[0].calls == 2

    @pytest.mark.asyncio
    async def test_cache_disabled(self, registry, fake_agent, evidence_factory):
        agents = await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry, cache_enabled=False)

        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)
        result = await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        assert not result.cached
        assert agents[0].calls == 2
        assert orchestrator.get_stats()["cache_size"] == 0

    def test_cache_key_ignores_request_id(self, make_request):
        first = make_request("Same content")
        second = make_request("Same content")

        assert first.id != second.id
        assert Orchestrator.cache_key(first) == Orchestrator.cache_key(second)
        assert Orchestrator.cache_key(first) != Orchestrator.cache_key(make_request("Other content"))


class TestStatusAndCancel:
    @pytest.mark.asyncio
    async def test_status_lifecycle(self, registry, fake_agent, evidence_factory, make_request):
        await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)
        request = make_request()

        assert orchestrator.get_verification_status(request.id) is None
        await orchestrator.verify(request)

        status = orchestrator.get_verification_status(request.id)
        assert status.status == VerificationState.COMPLETED
        assert status.progress == 100

    @pytest.mark.asyncio
    async def test_cancel_running_verification(self, registry, fake_agent, make_request):
        for agent_id in AGENTS:
            await registry.register_agent(fake_agent(agent_id, delay=0.2))
        orchestrator = build(registry)
        request = make_request()

        task = asyncio.create_task(orchestrator.verify(request))
        await asyncio.sleep(0.05)

        status = orchestrator.get_verification_status(request.id)
        assert status.status == VerificationState.PROCESSING
        assert status.progress == 0

        assert await orchestrator.cancel_verification(request.id) is True
        result = await task

        assert not result.success
        assert result.error == "Workflow cancelled"
        assert orchestrator.get_verification_status(request.id).status == VerificationState.FAILED
        # Cancelled agents were never invoked, so they leave no health trace
        assert orchestrator.health_monitor.get_agent_stats("y") is None

    @pytest.mark.asyncio
    async def test_cancel_unknown_request(self, registry):
        orchestrator = build(registry)
        assert await orchestrator.cancel_verification("req-missing") is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_releases_everything(self, registry, fake_agent, evidence_factory):
        agents = await register_all(registry, fake_agent, evidence_factory)

        async with build(registry) as orchestrator:
            assert orchestrator.health_monitor.is_running
            await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        assert not orchestrator.health_monitor.is_running
        assert all(agent.shut_down for agent in agents)
        assert orchestrator.get_stats()["cache_size"] == 0
        assert orchestrator.workflow_manager.get_all_workflows() == []

    @pytest.mark.asyncio
    async def test_health_views(self, registry, fake_agent, evidence_factory):
        await register_all(registry, fake_agent, evidence_factory)
        orchestrator = build(registry)
        await orchestrator.verify_content("Budget approved.", ContentKind.NEWS_ARTICLE)

        health = await orchestrator.get_agent_health()
        reported = await orchestrator.get_reported_health()
        system = orchestrator.get_system_health()

        assert set(health) == set(AGENTS)
        assert set(reported) == set(AGENTS)
        assert all(report.total_requests == 1 for report in reported.values())
        assert system.total_agents == 3
        assert orchestrator.get_stats()["system_health"] == system.overall_status.value
