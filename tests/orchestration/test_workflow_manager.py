"""Tests for WorkflowManager waves, retries, timeouts and cancellation."""

import asyncio

import pytest

from veda_orchestration.config.routing import (
    CONTENT_ANALYSIS,
    MULTILINGUAL,
    SOCIAL_GRAPH,
    SOURCE_FORENSICS,
)
from veda_orchestration.orchestration.workflow_manager import (
    CANCELLED_ERROR,
    FAILED_BY_DEPENDENCY,
    WorkflowManager,
)
from veda_orchestration.schemas.events import EventType
from veda_orchestration.schemas.request import Priority
from veda_orchestration.schemas.workflow import WorkflowStatus

FOUR_AGENTS = [CONTENT_ANALYSIS, SOURCE_FORENSICS, MULTILINGUAL, SOCIAL_GRAPH]


class SleepRecorder:
    """Stand-in for asyncio.sleep that records backoff delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def assert_settled(execution):
    """Every selected agent ends in exactly one of results or errors."""
    agents = set(execution.agent_ids)
    assert set(execution.results) | set(execution.agent_errors()) == agents
    assert not set(execution.results) & set(execution.errors)


@pytest.fixture
def recorder():
    return SleepRecorder()


@pytest.fixture
def manager(registry, recorder):
    return WorkflowManager(registry, default_timeout_ms=1000, max_retries=0, sleep=recorder)


class TestExecution:
    """Happy path, partial failures and events."""

    @pytest.mark.asyncio
    async def test_all_agents_succeed(self, registry, manager, fake_agent, make_request):
        for agent_id in FOUR_AGENTS:
            await registry.register_agent(fake_agent(agent_id))
        events = []
        manager.events.subscribe(events.append)

        execution = await manager.execute(make_request(), FOUR_AGENTS, FOUR_AGENTS)
        await manager.events.drain()

        assert execution.status == WorkflowStatus.COMPLETED
        assert list(execution.results) == FOUR_AGENTS
        assert execution.errors == {}
        assert execution.end_time is not None
        assert all(r.processing_time >= 0 for r in execution.results.values())
        assert_settled(execution)

        types = [e.type for e in events]
        assert types[0] == EventType.WORKFLOW_STARTED
        assert types.count(EventType.AGENT_RESPONSE) == 4
        assert types[-1] == EventType.WORKFLOW_COMPLETED
        assert events[-1].data["status"] == "completed"

    @pytest.mark.asyncio
    async def test_linear_mode_runs_one_agent_at_a_time(self, registry, manager, fake_agent, make_request):
        tracker = []
        for agent_id in FOUR_AGENTS:
            await registry.register_agent(fake_agent(agent_id, delay=0.01, tracker=tracker))

        await manager.execute(make_request(), FOUR_AGENTS, FOUR_AGENTS)

        expected = []
        for agent_id in FOUR_AGENTS:
            expected += [("start", agent_id), ("end", agent_id)]
        assert tracker == expected

    @pytest.mark.asyncio
    async def test_graph_mode_runs_independent_agents_together(self, registry, recorder, fake_agent, make_request):
        tracker = []
        for agent_id in FOUR_AGENTS:
            await registry.register_agent(fake_agent(agent_id, delay=0.01, tracker=tracker))
        manager = WorkflowManager(registry, dependency_mode="graph", max_retries=0, sleep=recorder)

        execution = await manager.execute(make_request(), FOUR_AGENTS, FOUR_AGENTS)

        assert execution.status == WorkflowStatus.COMPLETED
        # Wave 1: content-analysis and multilingual; wave 2: the dependents
        assert set(tracker[:2]) == {("start", CONTENT_ANALYSIS), ("start", MULTILINGUAL)}
        assert set(tracker[4:6]) == {("start", SOURCE_FORENSICS), ("start", SOCIAL_GRAPH)}

    @pytest.mark.asyncio
    async def test_failed_agent_does_not_stop_workflow(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent(CONTENT_ANALYSIS))
        await registry.register_agent(fake_agent(SOURCE_FORENSICS, fail=True))
        await registry.register_agent(fake_agent(SOCIAL_GRAPH))
        agents = [CONTENT_ANALYSIS, SOURCE_FORENSICS, SOCIAL_GRAPH]

        execution = await manager.execute(make_request(), agents, agents)

        assert execution.status == WorkflowStatus.COMPLETED
        assert set(execution.results) == {CONTENT_ANALYSIS, SOCIAL_GRAPH}
        assert "exploded" in execution.errors[SOURCE_FORENSICS]
        assert_settled(execution)

    @pytest.mark.asyncio
    async def test_all_agents_failing_still_completes(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent("a", fail=True))
        await registry.register_agent(fake_agent("b", fail=True))

        execution = await manager.execute(make_request(), ["a", "b"], ["a", "b"])

        assert execution.status == WorkflowStatus.COMPLETED
        assert execution.results == {}
        assert set(execution.errors) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_unregistered_agent_is_recorded_as_error(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent("a"))

        execution = await manager.execute(make_request(), ["a", "ghost"], ["a", "ghost"])

        assert execution.errors["ghost"] == "Agent not found: ghost"
        assert "a" in execution.results

    @pytest.mark.asyncio
    async def test_empty_selection(self, manager, make_request):
        execution = await manager.execute(make_request(), [], [])

        assert execution.status == WorkflowStatus.COMPLETED
        assert execution.results == {}
        assert execution.errors == {}

    @pytest.mark.asyncio
    async def test_invalid_response_is_a_failure(self, registry, manager, fake_agent, make_request):
        agent = fake_agent("a")

        async def analyze(request):
            return {"verdict": "true"}

        agent.analyze = analyze
        await registry.register_agent(agent)

        execution = await manager.execute(make_request(), ["a"], ["a"])
        assert "invalid response" in execution.errors["a"]


class TestRetries:
    """Per-attempt timeouts and exponential backoff."""

    @pytest.mark.asyncio
    async def test_timeouts_are_retried_with_backoff(self, registry, recorder, fake_agent, make_request):
        slow = fake_agent("slow", delay=1.0)
        await registry.register_agent(slow)
        manager = WorkflowManager(
            registry,
            default_timeout_ms=50,
            max_retries=2,
            backoff_base_ms=1000,
            backoff_max_ms=10_000,
            sleep=recorder,
        )

        execution = await manager.execute(make_request(), ["slow"], ["slow"])

        assert slow.calls == 3
        assert recorder.delays == [1.0, 2.0]
        assert "timed out" in execution.errors["slow"]
        assert execution.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, registry, recorder, fake_agent, make_request):
        await registry.register_agent(fake_agent("a", fail=True))
        manager = WorkflowManager(
            registry,
            max_retries=4,
            backoff_base_ms=1000,
            backoff_max_ms=3000,
            sleep=recorder,
        )

        await manager.execute(make_request(), ["a"], ["a"])
        assert recorder.delays == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_transient_failures_recover(self, registry, recorder, fake_agent, make_request):
        flaky = fake_agent("flaky", fail_times=2)
        await registry.register_agent(flaky)
        manager = WorkflowManager(registry, max_retries=3, sleep=recorder)
        events = []
        manager.events.subscribe(events.append)

        execution = await manager.execute(make_request(), ["flaky"], ["flaky"])
        await manager.events.drain()

        assert "flaky" in execution.results
        assert flaky.calls == 3
        assert execution.get_step("flaky").retry_count == 2
        responses = [e for e in events if e.type == EventType.AGENT_RESPONSE]
        assert len(responses) == 1
        assert responses[0].data["attempt"] == 2

    @pytest.mark.asyncio
    async def test_no_retries_when_disabled(self, registry, manager, fake_agent, make_request):
        agent = fake_agent("a", fail=True)
        await registry.register_agent(agent)

        await manager.execute(make_request(), ["a"], ["a"])
        assert agent.calls == 1

    @pytest.mark.asyncio
    async def test_attempt_outcomes_update_agent_counters(self, registry, recorder, fake_agent, make_request):
        flaky = fake_agent("flaky", fail_times=1)
        await registry.register_agent(flaky)
        manager = WorkflowManager(registry, max_retries=1, sleep=recorder)

        await manager.execute(make_request(), ["flaky"], ["flaky"])

        health = await flaky.get_health()
        assert health.total_requests == 2
        assert health.error_count == 1

    @pytest.mark.parametrize(
        "priority,expected",
        [
            (Priority.LOW, 45_000),
            (Priority.MEDIUM, 30_000),
            (Priority.HIGH, 21_000),
            (Priority.CRITICAL, 15_000),
        ],
    )
    def test_timeout_scales_with_priority(self, registry, priority, expected):
        manager = WorkflowManager(registry, default_timeout_ms=30_000)
        assert manager.get_timeout_for_priority(priority) == expected


class TestDependencies:
    """Dependency calculation, failures and planning errors."""

    def test_linear_dependencies(self, registry):
        manager = WorkflowManager(registry)
        deps = manager.calculate_dependencies(["a", "b", "c"], ["a", "b", "c"])
        assert deps == {"a": [], "b": ["a"], "c": ["a", "b"]}

    def test_graph_dependencies_restricted_to_workflow(self, registry):
        manager = WorkflowManager(registry, dependency_mode="graph")
        deps = manager.calculate_dependencies([SOURCE_FORENSICS, MULTILINGUAL], [SOURCE_FORENSICS, MULTILINGUAL])
        assert deps == {SOURCE_FORENSICS: [], MULTILINGUAL: []}

    def test_plan_waves_graph_mode(self, registry):
        manager = WorkflowManager(registry, dependency_mode="graph")
        steps = manager.create_steps(FOUR_AGENTS, FOUR_AGENTS, Priority.MEDIUM)

        assert manager.plan_waves(steps) == [
            [CONTENT_ANALYSIS, MULTILINGUAL],
            [SOURCE_FORENSICS, SOCIAL_GRAPH],
        ]

    def test_unknown_dependency_mode(self, registry):
        with pytest.raises(ValueError):
            WorkflowManager(registry, dependency_mode="parallel")

    @pytest.mark.asyncio
    async def test_graph_mode_never_schedules_dependents_of_failed_agent(
        self, registry, recorder, fake_agent, make_request
    ):
        await registry.register_agent(fake_agent(CONTENT_ANALYSIS, fail=True))
        dependent = fake_agent(SOURCE_FORENSICS)
        await registry.register_agent(dependent)
        manager = WorkflowManager(registry, dependency_mode="graph", max_retries=0, sleep=recorder)
        agents = [CONTENT_ANALYSIS, SOURCE_FORENSICS]

        execution = await manager.execute(make_request(), agents, agents)

        assert manager.skip_failed_dependents
        assert dependent.calls == 0
        assert execution.errors[SOURCE_FORENSICS].startswith(FAILED_BY_DEPENDENCY)
        assert execution.status == WorkflowStatus.COMPLETED
        assert_settled(execution)

    @pytest.mark.asyncio
    async def test_linear_mode_dependents_still_run(self, registry, recorder, fake_agent, make_request):
        await registry.register_agent(fake_agent(CONTENT_ANALYSIS, fail=True))
        dependent = fake_agent(SOURCE_FORENSICS)
        await registry.register_agent(dependent)
        manager = WorkflowManager(registry, max_retries=0, sleep=recorder)
        agents = [CONTENT_ANALYSIS, SOURCE_FORENSICS]

        execution = await manager.execute(make_request(), agents, agents)

        assert not manager.skip_failed_dependents
        assert dependent.calls == 1
        assert SOURCE_FORENSICS in execution.results

    @pytest.mark.asyncio
    async def test_graph_mode_can_run_dependents_anyway(self, registry, recorder, fake_agent, make_request):
        await registry.register_agent(fake_agent(CONTENT_ANALYSIS, fail=True))
        dependent = fake_agent(SOURCE_FORENSICS)
        await registry.register_agent(dependent)
        manager = WorkflowManager(
            registry,
            dependency_mode="graph",
            max_retries=0,
            skip_failed_dependents=False,
            sleep=recorder,
        )
        agents = [CONTENT_ANALYSIS, SOURCE_FORENSICS]

        execution = await manager.execute(make_request(), agents, agents)

        assert dependent.calls == 1
        assert SOURCE_FORENSICS in execution.results

    @pytest.mark.asyncio
    async def test_failed_dependency_blocks_every_dependent(self, registry, recorder, fake_agent, make_request):
        await registry.register_agent(fake_agent(CONTENT_ANALYSIS, fail=True))
        dependents = [fake_agent(SOURCE_FORENSICS), fake_agent(SOCIAL_GRAPH)]
        for agent in dependents:
            await registry.register_agent(agent)
        await registry.register_agent(fake_agent(MULTILINGUAL))
        manager = WorkflowManager(
            registry,
            dependency_mode="graph",
            max_retries=0,
            sleep=recorder,
        )

        execution = await manager.execute(make_request(), FOUR_AGENTS, FOUR_AGENTS)

        assert all(agent.calls == 0 for agent in dependents)
        assert execution.errors[SOURCE_FORENSICS] == f"{FAILED_BY_DEPENDENCY}: {CONTENT_ANALYSIS}"
        assert execution.errors[SOCIAL_GRAPH] == f"{FAILED_BY_DEPENDENCY}: {CONTENT_ANALYSIS}"
        assert MULTILINGUAL in execution.results
        assert_settled(execution)

    @pytest.mark.asyncio
    async def test_cycle_fails_workflow(self, registry, recorder, fake_agent, make_request):
        agents = [fake_agent("a"), fake_agent("b")]
        for agent in agents:
            await registry.register_agent(agent)
        manager = WorkflowManager(
            registry,
            dependency_mode="graph",
            dependencies={"a": ["b"], "b": ["a"]},
            sleep=recorder,
        )
        events = []
        manager.events.subscribe(events.append)

        execution = await manager.execute(make_request(), ["a", "b"], ["a", "b"])
        await manager.events.drain()

        assert execution.status == WorkflowStatus.FAILED
        assert "Circular dependency" in execution.errors["workflow"]
        assert execution.errors["a"].startswith("Workflow failed:")
        assert all(agent.calls == 0 for agent in agents)
        assert_settled(execution)
        assert EventType.ERROR in [e.type for e in events]
        assert events[-1].type == EventType.WORKFLOW_COMPLETED
        assert events[-1].data["status"] == "failed"


class TestCancellation:
    """Cancel requests stop scheduling and discard late responses."""

    @pytest.mark.asyncio
    async def test_cancel_running_workflow(self, registry, manager, fake_agent, make_request):
        first = fake_agent("first", delay=0.2)
        second = fake_agent("second")
        await registry.register_agent(first)
        await registry.register_agent(second)
        events = []
        manager.events.subscribe(events.append)
        request = make_request()

        task = asyncio.create_task(manager.execute(request, ["first", "second"], ["first", "second"]))
        await asyncio.sleep(0.05)

        workflow = manager.get_workflow_for_request(request.id)
        assert workflow.status == WorkflowStatus.RUNNING
        assert await manager.cancel(workflow.id) is True

        execution = await task
        await manager.events.drain()

        assert execution.status == WorkflowStatus.CANCELLED
        assert execution.results == {}
        assert execution.errors == {"first": CANCELLED_ERROR, "second": CANCELLED_ERROR}
        assert second.calls == 0

        types = [e.type for e in events]
        assert EventType.AGENT_RESPONSE not in types
        assert types.count(EventType.WORKFLOW_COMPLETED) == 1
        assert events[-1].data["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent("a"))
        execution = await manager.execute(make_request(), ["a"], ["a"])

        assert await manager.cancel(execution.id) is False
        assert await manager.cancel("workflow-missing") is False


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_stats_and_cleanup(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent("a"))
        await manager.execute(make_request(), ["a"], ["a"])
        await manager.execute(make_request(), ["a"], ["a"])

        stats = manager.get_stats()
        assert stats["completed_workflows"] == 2
        assert stats["active_workflows"] == 0
        assert stats["average_execution_time"] >= 0

        await asyncio.sleep(0.01)
        assert await manager.cleanup_completed_workflows(max_age=0) == 2
        assert manager.get_all_workflows() == []

    @pytest.mark.asyncio
    async def test_recent_workflows_survive_cleanup(self, registry, manager, fake_agent, make_request):
        await registry.register_agent(fake_agent("a"))
        await manager.execute(make_request(), ["a"], ["a"])

        assert await manager.cleanup_completed_workflows(max_age=3600) == 0
        assert len(manager.get_all_workflows()) == 1

    @pytest.mark.asyncio
    async def test_estimate_duration(self, registry, manager, fake_agent):
        await registry.register_agent(fake_agent("a", max_processing_time=1500))
        await registry.register_agent(fake_agent("b", max_processing_time=2500))
        steps = manager.create_steps(["a", "b", "ghost"], ["a", "b", "ghost"], Priority.MEDIUM)

        assert manager.estimate_duration(steps) == 4000
