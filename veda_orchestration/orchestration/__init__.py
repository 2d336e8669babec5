"""Orchestration layer: routing, execution, aggregation, decision and health."""

from veda_orchestration.orchestration.aggregator import AggregationConfig, ResultAggregator
from veda_orchestration.orchestration.decision_engine import DecisionConfig, DecisionEngine
from veda_orchestration.orchestration.health_monitor import HealthConfig, HealthMonitor
from veda_orchestration.orchestration.orchestrator import Orchestrator
from veda_orchestration.orchestration.router import RequestRouter
from veda_orchestration.orchestration.workflow_manager import WorkflowManager

__all__ = [
    "AggregationConfig",
    "DecisionConfig",
    "DecisionEngine",
    "HealthConfig",
    "HealthMonitor",
    "Orchestrator",
    "RequestRouter",
    "ResultAggregator",
    "WorkflowManager",
]
