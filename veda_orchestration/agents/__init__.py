"""Verification agents and the registry that owns them."""

from veda_orchestration.agents.base_agent import SpecializedAgent
from veda_orchestration.agents.http_agent import HttpAgent, build_http_agents
from veda_orchestration.agents.registry import AgentRegistry

__all__ = ["SpecializedAgent", "HttpAgent", "AgentRegistry", "build_http_agents"]
