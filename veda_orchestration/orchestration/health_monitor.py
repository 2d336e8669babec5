"""Agent health tracking, scoring and alerting."""

import asyncio
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from veda_orchestration.agents.registry import AgentRegistry
from veda_orchestration.config.settings import settings
from veda_orchestration.schemas.health import (
    AgentHealth,
    AlertSeverity,
    AlertType,
    HealthAlert,
    HealthMetric,
    HealthStats,
    HealthStatus,
    SystemHealth,
)
from veda_orchestration.utils.clock import as_utc, utcnow

AlertCallback = Callable[[HealthAlert], Any]
Clock = Callable[[], datetime]

CONSECUTIVE_FAILURE_WINDOW = 10
CONSECUTIVE_FAILURE_LIMIT = 3
DEGRADED_SUCCESS_RATE = 0.98
HEALTHY_AGENT_SCORE = 0.7


class HealthConfig(BaseModel):
    """Health monitor thresholds, defaults from settings."""

    check_interval: float = Field(default_factory=lambda: settings.health_check_interval, gt=0)
    response_time_threshold: float = Field(default_factory=lambda: settings.response_time_threshold_ms, gt=0)
    error_rate_threshold: float = Field(default_factory=lambda: settings.error_rate_threshold)
    availability_threshold: float = Field(default_factory=lambda: settings.availability_threshold)
    alert_cooldown: float = Field(default_factory=lambda: settings.alert_cooldown, ge=0)
    max_history_size: int = Field(default_factory=lambda: settings.max_history_size, ge=1)
    enable_alerts: bool = Field(default_factory=lambda: settings.enable_alerts)


class HealthMonitor:
    """
    Tracks agent availability, latency and errors; raises alerts.

    Metrics come from real traffic (recorded by the orchestrator) and from
    the background poll loop, which calls is_available() on every
    registered agent each check_interval seconds.

    Features:
    - Bounded per-agent metric history
    - Incremental stats and a composite health score
    - Alerts de-duplicated per (agent, type) inside the cooldown window
    - Synchronous health snapshot for the aggregator
    """

    def __init__(
        self,
        registry: AgentRegistry,
        config: Optional[HealthConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the health monitor. The poll loop is not started.

        Args:
            registry: Registry of the agents to monitor
            config: Thresholds; defaults from settings when omitted
            clock: Callable returning an aware "now" (for tests)
        """
        self.registry = registry
        self.config = config or HealthConfig()
        self._clock: Clock = clock or utcnow

        self._history: Dict[str, Deque[HealthMetric]] = {}
        self._stats: Dict[str, HealthStats] = {}
        self._availability: Dict[str, bool] = {}
        self._alerts: Dict[str, HealthAlert] = {}
        self._alert_callbacks: List[AlertCallback] = []

        self._lock = asyncio.Lock()
        self._alert_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(component="HealthMonitor")

        self.logger.info(
            "HealthMonitor initialized",
            check_interval=self.config.check_interval,
            alerts_enabled=self.config.enable_alerts,
        )

    async def record_metric(self, metric: HealthMetric) -> None:
        """
        Record one observed outcome and re-evaluate alerts for the agent.

        Args:
            metric: The observed outcome
        """
        async with self._lock:
            history = self._history.get(metric.agent_id)
            if history is None:
                history = deque(maxlen=self.config.max_history_size)
                self._history[metric.agent_id] = history
            history.append(metric)

            stats = self._update_stats(metric)
            recent = list(history)[-CONSECUTIVE_FAILURE_WINDOW:]

        if self.config.enable_alerts:
            await self._check_health_issues(metric.agent_id, stats, recent)

    def _update_stats(self, metric: HealthMetric) -> HealthStats:
        stats = self._stats.get(metric.agent_id)
        if stats is None:
            stats = HealthStats(last_check=self._clock())
            self._stats[metric.agent_id] = stats

        stats.total_requests += 1
        if metric.success:
            stats.successful_requests += 1
        else:
            stats.failed_requests += 1

        n = stats.total_requests
        stats.average_response_time = (stats.average_response_time * (n - 1) + metric.response_time) / n
        if metric.confidence is not None:
            stats.average_confidence = (stats.average_confidence * (n - 1) + metric.confidence) / n

        stats.uptime = stats.successful_requests / n
        stats.health_score = self.calculate_health_score(stats)
        stats.last_check = self._clock()
        return stats

    def calculate_health_score(self, stats: HealthStats) -> float:
        """0.3 x latency score + 0.5 x uptime + 0.2 x mean confidence."""
        response_time_score = max(0.0, 1.0 - stats.average_response_time / self.config.response_time_threshold)
        score = 0.3 * response_time_score + 0.5 * stats.uptime + 0.2 * stats.average_confidence
        return min(1.0, max(0.0, score))

    def determine_status(self, success_rate: float, response_time: float, available: bool) -> HealthStatus:
        if not available:
            return HealthStatus.UNHEALTHY
        if success_rate < self.config.availability_threshold:
            return HealthStatus.UNHEALTHY
        if response_time > self.config.response_time_threshold or success_rate < DEGRADED_SUCCESS_RATE:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _health_from_stats(self, agent_id: str, available: bool, response_time: Optional[float] = None) -> AgentHealth:
        stats = self._stats.get(agent_id)
        if stats is None:
            # No traffic yet, so the success rate is 0.0
            latency = response_time or 0.0
            return AgentHealth(
                agent_id=agent_id,
                status=self.determine_status(0.0, latency, available),
                response_time=latency,
                last_check=self._clock(),
            )

        latency = stats.average_response_time if response_time is None else response_time
        return AgentHealth(
            agent_id=agent_id,
            status=self.determine_status(stats.success_rate, latency, available),
            response_time=latency,
            success_rate=stats.success_rate,
            error_count=stats.failed_requests,
            total_requests=stats.total_requests,
            last_check=stats.last_check,
            health_score=stats.health_score,
        )

    async def get_agent_health(self, agent_id: str) -> AgentHealth:
        """
        Current health of one agent, checking its availability.

        Unregistered agents are reported as unknown.
        """
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            return AgentHealth(agent_id=agent_id, status=HealthStatus.UNKNOWN, last_check=self._clock())

        start = time.perf_counter()
        try:
            available = await agent.is_available()
        except Exception as e:
            self.logger.warning(f"Availability check failed for {agent_id}: {e}")
            return AgentHealth(
                agent_id=agent_id,
                status=HealthStatus.UNHEALTHY,
                error_count=1,
                last_check=self._clock(),
            )
        check_time = (time.perf_counter() - start) * 1000

        self._availability[agent_id] = available
        return self._health_from_stats(agent_id, available, check_time)

    async def get_all_agent_health(self) -> Dict[str, AgentHealth]:
        agents = self.registry.get_all_agents()
        results = await asyncio.gather(
            *(self.get_agent_health(agent.agent_id) for agent in agents),
            return_exceptions=True,
        )
        return {
            agent.agent_id: health
            for agent, health in zip(agents, results)
            if isinstance(health, AgentHealth)
        }

    def get_health_snapshot(self) -> Dict[str, AgentHealth]:
        """Health of every agent with recorded metrics, without checking availability."""
        return {
            agent_id: self._health_from_stats(agent_id, self._availability.get(agent_id, True))
            for agent_id in list(self._stats)
        }

    def get_agent_stats(self, agent_id: str) -> Optional[HealthStats]:
        stats = self._stats.get(agent_id)
        return stats.model_copy() if stats else None

    def get_history(self, agent_id: str) -> List[HealthMetric]:
        return list(self._history.get(agent_id, ()))

    async def _check_health_issues(self, agent_id: str, stats: HealthStats, recent: List[HealthMetric]) -> None:
        if stats.average_response_time > self.config.response_time_threshold:
            await self._create_alert(
                agent_id,
                AlertType.RESPONSE_TIME,
                AlertSeverity.HIGH,
                f"Agent {agent_id} has high response time: {round(stats.average_response_time)}ms",
            )

        if stats.error_rate > self.config.error_rate_threshold:
            await self._create_alert(
                agent_id,
                AlertType.ERROR_RATE,
                AlertSeverity.HIGH,
                f"Agent {agent_id} has high error rate: {round(stats.error_rate * 100)}%",
            )

        if stats.uptime < self.config.availability_threshold:
            await self._create_alert(
                agent_id,
                AlertType.AVAILABILITY,
                AlertSeverity.CRITICAL,
                f"Agent {agent_id} has low availability: {round(stats.uptime * 100)}%",
            )

        failures = 0
        for metric in reversed(recent):
            if metric.success:
                break
            failures += 1
        if failures >= CONSECUTIVE_FAILURE_LIMIT:
            await self._create_alert(
                agent_id,
                AlertType.PERFORMANCE,
                AlertSeverity.CRITICAL,
                f"Agent {agent_id} has {failures} consecutive failures",
            )

    async def _create_alert(
        self,
        agent_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
    ) -> Optional[HealthAlert]:
        now = self._clock()
        cooldown = timedelta(seconds=self.config.alert_cooldown)

        async with self._alert_lock:
            for existing in self._alerts.values():
                if (
                    existing.agent_id == agent_id
                    and existing.type == alert_type
                    and not existing.resolved
                    and now - existing.timestamp < cooldown
                ):
                    return None

            alert = HealthAlert(
                id=f"{agent_id}-{alert_type.value}-{int(now.timestamp() * 1000)}-{len(self._alerts)}",
                agent_id=agent_id,
                type=alert_type,
                severity=severity,
                message=message,
                timestamp=now,
            )
            self._alerts[alert.id] = alert

        self.logger.warning(message, alert_type=alert_type.value, severity=severity.value)

        for callback in list(self._alert_callbacks):
            try:
                callback(alert)
            except Exception as e:
                self.logger.error(f"Alert callback error: {e}")
        return alert

    def on_alert(self, callback: AlertCallback) -> None:
        self._alert_callbacks.append(callback)

    def off_alert(self, callback: AlertCallback) -> bool:
        try:
            self._alert_callbacks.remove(callback)
        except ValueError:
            return False
        return True

    def get_alerts(self) -> List[HealthAlert]:
        """All alerts, newest first."""
        return sorted(self._alerts.values(), key=lambda a: a.timestamp, reverse=True)

    def get_active_alerts(self) -> List[HealthAlert]:
        return [a for a in self.get_alerts() if not a.resolved]

    def get_agent_alerts(self, agent_id: str) -> List[HealthAlert]:
        """Unresolved alerts of one agent, newest first."""
        return [a for a in self.get_active_alerts() if a.agent_id == agent_id]

    async def resolve_alert(self, alert_id: str) -> bool:
        async with self._alert_lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.resolved:
                return False
            alert.resolved = True
            alert.resolved_at = self._clock()

        self.logger.info(f"Alert resolved: {alert_id}")
        return True

    def get_system_health(self) -> SystemHealth:
        agents = self.registry.get_all_agents()
        healthy = sum(
            1
            for agent in agents
            if agent.agent_id in self._stats and self._stats[agent.agent_id].health_score > HEALTHY_AGENT_SCORE
        )
        active_alerts = len(self.get_active_alerts())

        scores = [s.health_score for s in self._stats.values()]
        average = sum(scores) / len(scores) if scores else 0.0

        if average < 0.5 or active_alerts > 2:
            status = HealthStatus.UNHEALTHY
        elif average < 0.8 or active_alerts > 0:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return SystemHealth(
            overall_status=status,
            healthy_agents=healthy,
            total_agents=len(agents),
            active_alerts=active_alerts,
            average_health_score=average,
        )

    async def perform_health_checks(self) -> None:
        """Check every registered agent once and record the outcomes."""
        for agent in self.registry.get_all_agents():
            start = time.perf_counter()
            try:
                available = await asyncio.wait_for(agent.is_available(), timeout=self.config.check_interval)
                metric = HealthMetric(
                    agent_id=agent.agent_id,
                    timestamp=self._clock(),
                    response_time=(time.perf_counter() - start) * 1000,
                    success=bool(available),
                )
            except Exception as e:
                available = False
                metric = HealthMetric(
                    agent_id=agent.agent_id,
                    timestamp=self._clock(),
                    success=False,
                    error=str(e) or type(e).__name__,
                )

            self._availability[agent.agent_id] = bool(available)
            await self.record_metric(metric)

    async def start(self) -> None:
        """Start the background poll loop."""
        if self._poll_task and not self._poll_task.done():
            self.logger.warning("Health monitoring already running")
            return

        async def monitor():
            """Background task to periodically check agents."""
            while True:
                try:
                    await asyncio.sleep(self.config.check_interval)
                    await self.perform_health_checks()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    self.logger.error(f"Health monitoring error: {e}")

        self._poll_task = asyncio.create_task(monitor())
        self.logger.info("Health monitoring started")

    async def stop(self) -> None:
        """Stop the background poll loop."""
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self.logger.info("Health monitoring stopped")
        self._poll_task = None

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def cleanup(self, max_age: float = 86_400.0) -> None:
        """Drop metrics and resolved alerts older than max_age seconds."""
        cutoff = self._clock() - timedelta(seconds=max_age)

        async with self._lock:
            for agent_id, history in self._history.items():
                kept = [m for m in history if as_utc(m.timestamp) > cutoff]
                self._history[agent_id] = deque(kept, maxlen=self.config.max_history_size)

        async with self._alert_lock:
            stale = [a.id for a in self._alerts.values() if a.resolved and a.timestamp < cutoff]
            for alert_id in stale:
                del self._alerts[alert_id]

    def get_config(self) -> HealthConfig:
        return self.config.model_copy()

    async def update_config(self, **changes: Any) -> HealthConfig:
        """Replace config fields; restarts the poll loop when it is running."""
        self.config = HealthConfig.model_validate({**self.config.model_dump(), **changes})

        async with self._lock:
            for agent_id, history in self._history.items():
                self._history[agent_id] = deque(history, maxlen=self.config.max_history_size)

        if "check_interval" in changes and self.is_running:
            await self.stop()
            await self.start()
        return self.get_config()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
