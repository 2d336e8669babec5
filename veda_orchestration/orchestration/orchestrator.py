"""End-to-end verification pipeline.

    request -> RequestRouter -> WorkflowManager -> ResultAggregator -> DecisionEngine

The orchestrator owns the components (all sharing one AgentRegistry),
records per-agent health metrics from real traffic, caches successful
results and re-publishes workflow events and health alerts on its own bus.

Usage:
    registry = AgentRegistry()
    await registry.register_agent(agent)
    async with Orchestrator(registry) as orchestrator:
        result = await orchestrator.verify_content("...", ContentKind.NEWS_ARTICLE)
"""

import hashlib
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger

from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.communication.bus import EventBus
from veda_orchestration.config.logging import ensure_logging_configured, request_scope
from veda_orchestration.config.settings import settings
from veda_orchestration.errors import NoCandidateAgentsError, OrchestrationError
from veda_orchestration.orchestration.aggregator import ResultAggregator
from veda_orchestration.orchestration.decision_engine import DecisionEngine
from veda_orchestration.orchestration.health_monitor import HealthMonitor
from veda_orchestration.orchestration.router import RequestRouter
from veda_orchestration.orchestration.workflow_manager import (
    CANCELLED_ERROR,
    FAILED_BY_DEPENDENCY,
    WORKFLOW_ERROR_KEY,
    WorkflowManager,
)
from veda_orchestration.schemas.events import EventType
from veda_orchestration.schemas.health import AgentHealth, HealthAlert, HealthMetric, SystemHealth
from veda_orchestration.schemas.orchestration import (
    OrchestrationResult,
    VerificationState,
    VerificationStatus,
)
from veda_orchestration.schemas.request import (
    ContentKind,
    ContentMetadata,
    Priority,
    VerificationRequest,
)
from veda_orchestration.schemas.workflow import WorkflowExecution, WorkflowStatus
from veda_orchestration.utils.logging import get_correlation_id


class Orchestrator:
    """
    Main controller wiring routing, execution, aggregation and decision.

    Every component can be injected; missing ones are built from settings
    around the given registry. Build it inside a running event loop: it
    subscribes to the workflow manager's bus on construction.

    Attributes:
        registry: Agents available to this orchestrator
        events: Bus carrying workflow, error and health_update events
        cache_enabled: Whether successful results are cached
        cache_ttl: Seconds a cached result stays valid
    """

    def __init__(
        self,
        registry: AgentRegistry,
        router: Optional[RequestRouter] = None,
        workflow_manager: Optional[WorkflowManager] = None,
        aggregator: Optional[ResultAggregator] = None,
        decision_engine: Optional[DecisionEngine] = None,
        health_monitor: Optional[HealthMonitor] = None,
        event_bus: Optional[EventBus] = None,
        cache_enabled: Optional[bool] = None,
        cache_ttl: Optional[float] = None,
        time_fn: Optional[Callable[[], float]] = None,
    ):
        ensure_logging_configured()
        self.registry = registry
        self.router = router or RequestRouter(registry)
        self.workflow_manager = workflow_manager or WorkflowManager(registry)
        self.aggregator = aggregator or ResultAggregator()
        self.decision_engine = decision_engine or DecisionEngine()
        self.health_monitor = health_monitor or HealthMonitor(registry)
        self.events = event_bus or EventBus("Orchestrator")

        self.cache_enabled = settings.cache_enabled if cache_enabled is None else cache_enabled
        self.cache_ttl = settings.cache_ttl if cache_ttl is None else cache_ttl
        self._time = time_fn or time.monotonic
        self._cache: Dict[str, Tuple[float, OrchestrationResult]] = {}

        self._stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_processing_time": 0.0,
            "cache_hits": 0,
            "cache_misses": 0,
        }

        self._unsubscribe_workflow = self.workflow_manager.events.subscribe(self.events.publish)
        self.health_monitor.on_alert(self._on_alert)
        self.logger = logger.bind(component="Orchestrator")

    def _on_alert(self, alert: HealthAlert) -> None:
        self.events.emit(EventType.HEALTH_UPDATE, "", alert=alert.model_dump(mode="json"))

    async def verify_content(
        self,
        content: str,
        content_kind: ContentKind = ContentKind.UNKNOWN,
        metadata: Optional[Union[ContentMetadata, Dict[str, Any]]] = None,
        priority: Priority = Priority.MEDIUM,
    ) -> OrchestrationResult:
        """
        Verify raw content end to end.

        Never raises for pipeline failures; they are reported on the
        returned result and as an error event.

        Args:
            content: Raw content to verify
            content_kind: Kind tag driving agent selection
            metadata: ContentMetadata or a dict of its fields
            priority: Request priority

        Returns:
            OrchestrationResult with the decision on success
        """
        start = time.perf_counter()
        try:
            request = VerificationRequest(
                content=content,
                content_kind=content_kind,
                metadata=metadata if isinstance(metadata, ContentMetadata) else ContentMetadata(**(metadata or {})),
                priority=priority,
            )
        except ValueError as e:
            self._stats["total_requests"] += 1
            return self._failure("", f"Invalid request: {e}", start)

        return await self.verify(request)

    async def verify(self, request: VerificationRequest) -> OrchestrationResult:
        """Run the pipeline for a prebuilt request."""
        start = time.perf_counter()
        self._stats["total_requests"] += 1
        with request_scope(request.id, get_correlation_id()):
            try:
                if self.cache_enabled:
                    cached = self._get_cached(request)
                    if cached is not None:
                        self._stats["cache_hits"] += 1
                        self.logger.info("Cache hit")
                        return cached.model_copy(
                            update={
                                "request_id": request.id,
                                "cached": True,
                                "processing_time": (time.perf_counter() - start) * 1000,
                            }
                        )
                    self._stats["cache_misses"] += 1

                return await self._run_pipeline(request, start)
            except Exception as e:
                self.logger.error(f"Verification failed: {e}")
                return self._failure(request.id, str(e), start)

    async def _run_pipeline(self, request: VerificationRequest, start: float) -> OrchestrationResult:
        routing = await self.router.route(request)
        if not routing.selected_agents:
            raise NoCandidateAgentsError(routing.content_kind.value)

        workflow = await self.workflow_manager.execute(
            request,
            routing.selected_agents,
            routing.execution_order,
        )
        if workflow.status != WorkflowStatus.COMPLETED:
            reason = workflow.errors.get(WORKFLOW_ERROR_KEY)
            message = f"Workflow {workflow.status.value}"
            raise OrchestrationError(f"{message}: {reason}" if reason else message)

        await self._record_metrics(workflow)

        aggregation = self.aggregator.aggregate(workflow, self.health_monitor.get_health_snapshot())
        decision = self.decision_engine.decide(aggregation, request)

        processing_time = (time.perf_counter() - start) * 1000
        result = OrchestrationResult(
            success=True,
            request_id=request.id,
            decision=decision,
            aggregation=aggregation,
            routing=routing,
            workflow_id=workflow.id,
            processing_time=processing_time,
        )

        if self.cache_enabled:
            self._cache[self.cache_key(request)] = (self._time(), result)

        self._stats["successful_requests"] += 1
        self._stats["total_processing_time"] += processing_time
        self.logger.info(
            "Verification complete",
            request_id=request.id,
            verdict=decision.final_verdict.value,
            confidence=round(decision.confidence, 4),
            processing_time_ms=round(processing_time, 1),
        )
        return result

    def _failure(self, request_id: str, message: str, start: float) -> OrchestrationResult:
        processing_time = (time.perf_counter() - start) * 1000
        self._stats["failed_requests"] += 1
        self._stats["total_processing_time"] += processing_time
        self.events.emit(EventType.ERROR, request_id, error=message)
        return OrchestrationResult(
            success=False,
            request_id=request_id,
            error=message,
            processing_time=processing_time,
        )

    async def _record_metrics(self, workflow: WorkflowExecution) -> None:
        """Feed real traffic outcomes into the health monitor."""
        for agent_id, response in workflow.results.items():
            await self.health_monitor.record_metric(
                HealthMetric(
                    agent_id=agent_id,
                    response_time=response.processing_time,
                    success=True,
                    confidence=response.confidence,
                )
            )

        for agent_id, error in workflow.agent_errors().items():
            # Agents that were never invoked say nothing about their health
            if error == CANCELLED_ERROR or error.startswith(FAILED_BY_DEPENDENCY):
                continue
            await self.health_monitor.record_metric(
                HealthMetric(agent_id=agent_id, success=False, error=error)
            )

    @staticmethod
    def cache_key(request: VerificationRequest) -> str:
        """Content kind plus hashes of the content and its metadata."""
        content_hash = hashlib.sha256(request.content.encode("utf-8")).hexdigest()[:16]
        metadata_json = json.dumps(request.metadata.model_dump(mode="json"), sort_keys=True)
        metadata_hash = hashlib.sha256(metadata_json.encode("utf-8")).hexdigest()[:16]
        return f"{request.content_kind.value}-{content_hash}-{metadata_hash}"

    def _get_cached(self, request: VerificationRequest) -> Optional[OrchestrationResult]:
        key = self.cache_key(request)
        entry = self._cache.get(key)
        if entry is None:
            return None

        stored_at, result = entry
        if self._time() - stored_at > self.cache_ttl:
            del self._cache[key]
            return None
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_verification_status(self, request_id: str) -> Optional[VerificationStatus]:
        """Progress of the workflow started for a request, None if unknown."""
        workflow = self.workflow_manager.get_workflow_for_request(request_id)
        if workflow is None:
            return None

        if workflow.status == WorkflowStatus.PENDING:
            state, progress = VerificationState.PENDING, None
        elif workflow.status == WorkflowStatus.RUNNING:
            settled = len(workflow.results) + len(workflow.agent_errors())
            state = VerificationState.PROCESSING
            progress = round(settled / len(workflow.steps) * 100) if workflow.steps else 0
        elif workflow.status == WorkflowStatus.COMPLETED:
            state, progress = VerificationState.COMPLETED, 100
        else:
            state, progress = VerificationState.FAILED, None

        return VerificationStatus(
            request_id=request_id,
            status=state,
            progress=progress,
            workflow_id=workflow.id,
        )

    async def cancel_verification(self, request_id: str) -> bool:
        workflow = self.workflow_manager.get_workflow_for_request(request_id)
        if workflow is None:
            return False
        return await self.workflow_manager.cancel(workflow.id)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats
        lookups = stats["cache_hits"] + stats["cache_misses"]
        return {
            "total_requests": stats["total_requests"],
            "successful_requests": stats["successful_requests"],
            "failed_requests": stats["failed_requests"],
            "average_processing_time": (
                stats["total_processing_time"] / stats["total_requests"] if stats["total_requests"] else 0.0
            ),
            "active_workflows": self.workflow_manager.get_stats()["active_workflows"],
            "system_health": self.health_monitor.get_system_health().overall_status.value,
            "agent_count": len(self.registry),
            "cache_hit_rate": stats["cache_hits"] / lookups if lookups else 0.0,
            "cache_size": len(self._cache),
        }

    async def drain_events(self) -> None:
        """Wait until workflow events and alerts reached every observer of this bus."""
        await self.workflow_manager.events.drain()
        await self.events.drain()

    def get_system_health(self) -> SystemHealth:
        return self.health_monitor.get_system_health()

    async def get_agent_health(self) -> Dict[str, AgentHealth]:
        return await self.health_monitor.get_all_agent_health()

    async def get_reported_health(self) -> Dict[str, AgentHealth]:
        """What each agent says about itself, next to the monitor's view."""
        return await self.registry.get_agents_health()

    def get_alerts(self) -> List[HealthAlert]:
        return self.health_monitor.get_alerts()

    async def start(self) -> None:
        """Start background health polling."""
        await self.health_monitor.start()

    async def shutdown(self) -> None:
        """Stop polling, drop finished state and shut down every agent."""
        self.logger.info("Shutting down orchestrator")
        await self.health_monitor.stop()
        await self.workflow_manager.cleanup_completed_workflows(max_age=0)
        await self.health_monitor.cleanup()
        self.health_monitor.off_alert(self._on_alert)
        await self.workflow_manager.events.drain()
        await self._unsubscribe_workflow()
        self._cache.clear()
        await self.events.shutdown()
        await self.registry.shutdown()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
