"""Workflow execution: dependency waves, per-agent retries and timeouts.

Agents run in waves. A wave holds every not-yet-scheduled agent whose
dependencies were scheduled in earlier waves; agents inside a wave run
concurrently and the wave settles completely before the next one starts.

Each agent gets up to max_retries + 1 attempts. Every attempt is raced
against the step timeout, and failed attempts are separated by an
exponential backoff of min(base * 2^attempt, max).
"""

import asyncio
import math
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from veda_orchestration.agents.base_agent import SpecializedAgent
from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.communication.bus import EventBus
from veda_orchestration.config.routing import AGENT_DEPENDENCIES, PRIORITY_TIMEOUT_MULTIPLIERS
from veda_orchestration.config.settings import settings
from veda_orchestration.errors import (
    AgentInvocationError,
    AgentNotFoundError,
    AgentTimeoutError,
    CircularDependencyError,
)
from veda_orchestration.schemas.events import EventType
from veda_orchestration.schemas.request import Priority, VerificationRequest
from veda_orchestration.schemas.response import AgentResponse
from veda_orchestration.schemas.workflow import WorkflowExecution, WorkflowStatus, WorkflowStep

WORKFLOW_ERROR_KEY = "workflow"
CANCELLED_ERROR = "cancelled"
FAILED_BY_DEPENDENCY = "failed-by-dependency"

SleepFn = Callable[[float], Awaitable[None]]


class WorkflowManager:
    """
    Runs one workflow per request against the agents in the registry.

    Dependency modes:
    - "linear" (default): every agent depends on all agents before it in
      the execution order, so agents effectively run one per wave
    - "graph": only the pairwise dependency table is honored, so
      independent agents share a wave

    Terminal workflows keep every selected agent in exactly one of
    results or errors.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        event_bus: Optional[EventBus] = None,
        default_timeout_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
        backoff_max_ms: Optional[int] = None,
        dependency_mode: str = "linear",
        dependencies: Optional[Mapping[str, Sequence[str]]] = None,
        skip_failed_dependents: Optional[bool] = None,
        sleep: Optional[SleepFn] = None,
    ):
        """
        Initialize the workflow manager.

        Args:
            registry: Registry the agents are invoked from
            event_bus: Bus for workflow events (a private bus when omitted)
            default_timeout_ms: Base per-attempt timeout before priority scaling
            max_retries: Retries per agent after the first attempt
            backoff_base_ms: First backoff delay
            backoff_max_ms: Backoff ceiling
            dependency_mode: "linear" or "graph"
            dependencies: Pairwise table used in graph mode
            skip_failed_dependents: Record dependents of failed agents as
                failed without invoking them. Defaults to True in graph
                mode and False in linear mode
            sleep: Coroutine used for backoff delays
        """
        if dependency_mode not in ("linear", "graph"):
            raise ValueError(f"Unknown dependency mode: {dependency_mode}")

        self.registry = registry
        self.events = event_bus or EventBus("WorkflowManager")
        self.default_timeout_ms = default_timeout_ms or settings.default_timeout_ms
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.backoff_base_ms = settings.backoff_base_ms if backoff_base_ms is None else backoff_base_ms
        self.backoff_max_ms = settings.backoff_max_ms if backoff_max_ms is None else backoff_max_ms
        self.dependency_mode = dependency_mode
        self.dependencies = {
            k: list(v) for k, v in (dependencies if dependencies is not None else AGENT_DEPENDENCIES).items()
        }
        if skip_failed_dependents is None:
            skip_failed_dependents = dependency_mode == "graph"
        self.skip_failed_dependents = skip_failed_dependents
        self._sleep: SleepFn = sleep or asyncio.sleep

        self._workflows: Dict[str, WorkflowExecution] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="WorkflowManager")

    async def execute(
        self,
        request: VerificationRequest,
        selected_agents: Sequence[str],
        execution_order: Sequence[str],
    ) -> WorkflowExecution:
        """
        Create and run a workflow for a verification request.

        Never raises for agent or planning failures: they are recorded on
        the returned execution.

        Args:
            request: The verification request
            selected_agents: Agents chosen by the router
            execution_order: Topological order chosen by the router

        Returns:
            The terminal WorkflowExecution
        """
        agents = list(dict.fromkeys(selected_agents))
        execution = WorkflowExecution(
            id=f"workflow-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
            request_id=request.id,
            steps=self.create_steps(agents, execution_order, request.priority),
        )

        async with self._lock:
            self._workflows[execution.id] = execution

        self.events.emit(
            EventType.WORKFLOW_STARTED,
            request.id,
            workflow_id=execution.id,
            selected_agents=agents,
        )
        self.logger.info(
            f"Workflow {execution.id} started",
            request_id=request.id,
            agents=agents,
        )

        execution.status = WorkflowStatus.RUNNING
        try:
            waves = self.plan_waves(execution.steps)
            for index, wave in enumerate(waves):
                if execution.status == WorkflowStatus.CANCELLED:
                    break
                self.logger.debug(f"Running wave {index + 1}/{len(waves)}", agents=wave)
                await self._run_wave(wave, execution, request)
        except Exception as e:
            execution.status = WorkflowStatus.FAILED
            execution.errors[WORKFLOW_ERROR_KEY] = str(e)
            self._settle_remaining(execution, f"Workflow failed: {e}")
            self.logger.error(f"Workflow {execution.id} failed: {e}", request_id=request.id)
            self.events.emit(EventType.ERROR, request.id, workflow_id=execution.id, error=str(e))

        if execution.status == WorkflowStatus.CANCELLED:
            self._settle_remaining(execution, CANCELLED_ERROR)
            self.logger.info(f"Workflow {execution.id} cancelled", request_id=request.id)
            return execution

        if execution.status == WorkflowStatus.RUNNING:
            execution.status = WorkflowStatus.COMPLETED
        execution.end_time = datetime.now(timezone.utc)

        self.events.emit(
            EventType.WORKFLOW_COMPLETED,
            request.id,
            workflow_id=execution.id,
            status=execution.status.value,
            duration=execution.duration_ms,
        )
        self.logger.info(
            f"Workflow {execution.id} {execution.status.value}",
            request_id=request.id,
            succeeded=len(execution.results),
            failed=len(execution.agent_errors()),
            duration_ms=execution.duration_ms,
        )
        return execution

    def create_steps(
        self,
        agent_ids: Sequence[str],
        execution_order: Sequence[str],
        priority: Priority,
    ) -> List[WorkflowStep]:
        dependencies = self.calculate_dependencies(agent_ids, execution_order)
        timeout = self.get_timeout_for_priority(priority)
        return [
            WorkflowStep(
                id=f"{agent_id}-{uuid.uuid4().hex[:8]}",
                agent_id=agent_id,
                dependencies=dependencies.get(agent_id, []),
                timeout=timeout,
                max_retries=self.max_retries,
                priority=priority,
            )
            for agent_id in agent_ids
        ]

    def calculate_dependencies(
        self,
        agent_ids: Sequence[str],
        execution_order: Sequence[str],
    ) -> Dict[str, List[str]]:
        """Dependencies per agent, restricted to agents of this workflow."""
        members = set(agent_ids)

        if self.dependency_mode == "graph":
            return {
                agent_id: [d for d in self.dependencies.get(agent_id, []) if d in members]
                for agent_id in agent_ids
            }

        # Linear chain: everything earlier in the order
        order = [a for a in dict.fromkeys(execution_order) if a in members]
        return {agent_id: order[:i] for i, agent_id in enumerate(order)}

    def get_timeout_for_priority(self, priority: Priority) -> int:
        multiplier = PRIORITY_TIMEOUT_MULTIPLIERS.get(Priority(priority).value, 1.0)
        return math.ceil(round(self.default_timeout_ms * multiplier, 6))

    def plan_waves(self, steps: Sequence[WorkflowStep]) -> List[List[str]]:
        """
        Group agents into sequential waves of concurrently runnable agents.

        Raises:
            CircularDependencyError: If a non-empty remainder has no
                runnable agent.
        """
        dependencies = {step.agent_id: step.dependencies for step in steps}
        remaining = [step.agent_id for step in steps]
        scheduled: set = set()
        waves: List[List[str]] = []

        while remaining:
            wave = [a for a in remaining if all(d in scheduled for d in dependencies[a])]
            if not wave:
                raise CircularDependencyError()
            waves.append(wave)
            scheduled.update(wave)
            remaining = [a for a in remaining if a not in scheduled]

        return waves

    async def _run_wave(
        self,
        agent_ids: List[str],
        execution: WorkflowExecution,
        request: VerificationRequest,
    ) -> None:
        runnable = []
        for agent_id in agent_ids:
            blocked_by = self._failed_dependency(agent_id, execution)
            if blocked_by is not None:
                execution.errors[agent_id] = f"{FAILED_BY_DEPENDENCY}: {blocked_by}"
                self.logger.warning(f"Skipping {agent_id}, dependency {blocked_by} failed")
            else:
                runnable.append(agent_id)

        outcomes = await asyncio.gather(
            *(self._execute_agent_step(agent_id, execution, request) for agent_id in runnable),
            return_exceptions=True,
        )

        # Late responses after a cancel are discarded
        cancelled = execution.status == WorkflowStatus.CANCELLED
        for agent_id, outcome in zip(runnable, outcomes):
            if cancelled:
                execution.errors[agent_id] = CANCELLED_ERROR
            elif isinstance(outcome, BaseException):
                execution.errors[agent_id] = str(outcome) or type(outcome).__name__
            else:
                execution.results[agent_id] = outcome

    def _failed_dependency(self, agent_id: str, execution: WorkflowExecution) -> Optional[str]:
        if not self.skip_failed_dependents:
            return None
        step = execution.get_step(agent_id)
        for dep in step.dependencies if step else []:
            if dep in execution.errors:
                return dep
        return None

    async def _execute_agent_step(
        self,
        agent_id: str,
        execution: WorkflowExecution,
        request: VerificationRequest,
    ) -> AgentResponse:
        step = execution.get_step(agent_id)
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(step.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.backoff_base_ms / 1000,
                max=self.backoff_max_ms / 1000,
            ),
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                step.retry_count = attempt.retry_state.attempt_number - 1
                response = await self._attempt(agent, step, request)

        if execution.status != WorkflowStatus.CANCELLED:
            self.events.emit(
                EventType.AGENT_RESPONSE,
                execution.request_id,
                workflow_id=execution.id,
                agent_id=agent_id,
                attempt=step.retry_count,
                response=response.model_dump(mode="json"),
            )
        return response

    async def _attempt(
        self,
        agent: SpecializedAgent,
        step: WorkflowStep,
        request: VerificationRequest,
    ) -> AgentResponse:
        """One analyze() call raced against the step timeout."""
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(agent.analyze(request), timeout=step.timeout / 1000)
            if not isinstance(response, AgentResponse):
                raise AgentInvocationError(agent.agent_id, f"Agent {agent.agent_id} returned an invalid response")
        except asyncio.TimeoutError:
            agent.record_outcome((time.perf_counter() - start) * 1000, success=False)
            self.logger.warning(f"Agent {agent.agent_id} timed out", attempt=step.retry_count)
            raise AgentTimeoutError(agent.agent_id, step.timeout)
        except AgentInvocationError:
            agent.record_outcome((time.perf_counter() - start) * 1000, success=False)
            raise
        except Exception as e:
            agent.record_outcome((time.perf_counter() - start) * 1000, success=False)
            self.logger.warning(f"Agent {agent.agent_id} failed: {e}", attempt=step.retry_count)
            raise AgentInvocationError(agent.agent_id, str(e) or type(e).__name__) from e

        processing_time = (time.perf_counter() - start) * 1000
        agent.record_outcome(processing_time, success=True)
        return response.model_copy(update={"processing_time": processing_time})

    def _settle_remaining(self, execution: WorkflowExecution, message: str) -> None:
        for agent_id in execution.agent_ids:
            if agent_id not in execution.results and agent_id not in execution.errors:
                execution.errors[agent_id] = message

    async def cancel(self, workflow_id: str) -> bool:
        """
        Cancel a running workflow.

        Scheduling stops before the next wave; in-flight agents are not
        interrupted but their responses are discarded.

        Returns:
            True if the workflow was running and is now cancelled
        """
        async with self._lock:
            execution = self._workflows.get(workflow_id)
            if execution is None or execution.status != WorkflowStatus.RUNNING:
                return False

            execution.status = WorkflowStatus.CANCELLED
            execution.end_time = datetime.now(timezone.utc)

        self.events.emit(
            EventType.WORKFLOW_COMPLETED,
            execution.request_id,
            workflow_id=workflow_id,
            status=WorkflowStatus.CANCELLED.value,
        )
        self.logger.info(f"Workflow {workflow_id} cancellation requested")
        return True

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowExecution]:
        return self._workflows.get(workflow_id)

    def get_workflow_for_request(self, request_id: str) -> Optional[WorkflowExecution]:
        """Most recent workflow started for a request id."""
        matches = [w for w in self._workflows.values() if w.request_id == request_id]
        return matches[-1] if matches else None

    def get_all_workflows(self) -> List[WorkflowExecution]:
        return list(self._workflows.values())

    async def cleanup_completed_workflows(self, max_age: float = 3600.0) -> int:
        """
        Drop terminal workflows that ended more than max_age seconds ago.

        Returns:
            Number of workflows removed
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)
        async with self._lock:
            stale = [
                workflow_id
                for workflow_id, w in self._workflows.items()
                if w.end_time is not None and w.end_time < cutoff
            ]
            for workflow_id in stale:
                del self._workflows[workflow_id]

        if stale:
            self.logger.debug(f"Cleaned up {len(stale)} workflows")
        return len(stale)

    def estimate_duration(self, steps: Sequence[WorkflowStep]) -> int:
        """Sum of the agents' max processing times in ms."""
        total = 0
        for step in steps:
            agent = self.registry.get_agent(step.agent_id)
            if agent is not None:
                total += agent.max_processing_time
        return total

    def get_stats(self) -> Dict[str, Any]:
        workflows = self.get_all_workflows()
        completed = [w for w in workflows if w.status == WorkflowStatus.COMPLETED]
        total_time = sum(w.duration_ms or 0.0 for w in completed)

        return {
            "active_workflows": sum(1 for w in workflows if w.status == WorkflowStatus.RUNNING),
            "completed_workflows": len(completed),
            "failed_workflows": sum(1 for w in workflows if w.status == WorkflowStatus.FAILED),
            "cancelled_workflows": sum(1 for w in workflows if w.status == WorkflowStatus.CANCELLED),
            "average_execution_time": total_time / len(completed) if completed else 0.0,
        }
