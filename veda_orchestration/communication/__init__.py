"""Event delivery for orchestration observers."""

from veda_orchestration.communication.bus import EventBus

__all__ = ["EventBus"]
