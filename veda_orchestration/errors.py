"""Exception taxonomy for routing, scheduling and agent invocation."""

from typing import Optional


class OrchestrationError(Exception):
    """Base class for all orchestration failures."""
    pass


class NoCandidateAgentsError(OrchestrationError):
    """Raised by the orchestrator when routing selected zero agents."""

    def __init__(self, content_kind: str):
        self.content_kind = content_kind
        super().__init__(f"No suitable agents available for content kind '{content_kind}'")


class CircularDependencyError(OrchestrationError):
    """Raised when agent dependencies cannot be ordered. Fatal to planning."""

    def __init__(self, agent_id: Optional[str] = None):
        self.agent_id = agent_id
        if agent_id:
            message = f"Circular dependency detected involving agent: {agent_id}"
        else:
            message = "Circular dependency detected in workflow"
        super().__init__(message)


class AgentNotFoundError(OrchestrationError):
    """Raised when a workflow step names an agent missing from the registry."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class AgentInvocationError(OrchestrationError):
    """A single agent attempt failed. Retryable up to the step's limit."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(message)


class AgentTimeoutError(AgentInvocationError):
    """A single agent attempt lost the race against its timeout."""

    def __init__(self, agent_id: str, timeout_ms: float):
        self.timeout_ms = timeout_ms
        super().__init__(agent_id, f"Agent {agent_id} timed out after {timeout_ms:.0f}ms")
