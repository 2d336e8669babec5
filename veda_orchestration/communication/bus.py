"""Event bus using aiopubsub to deliver orchestration events to observers."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional

from aiopubsub import Hub, Key, Subscriber
from loguru import logger

from veda_orchestration.schemas.events import EventType, OrchestrationEvent

EventCallback = Callable[[OrchestrationEvent], Any]

# Every event is published under a one-segment key named after its type
ALL_EVENTS = Key("*")


class _Subscription:
    def __init__(self, subscriber: Subscriber, callback: EventCallback):
        self.subscriber = subscriber
        self.callback = callback
        self.pending = 0
        self.active = True


class EventBus:
    """
    Pub/sub bus for orchestration events on top of an aiopubsub Hub.

    Each component owns its own bus instance. Every observer gets its own
    Subscriber with a listener on all event keys; aiopubsub queues the
    events per listener, so each observer sees them in publish order.
    Delivery is asynchronous: observers run on the event loop after
    publish() returns. Use drain() to wait for delivery.

    Callbacks may be plain functions or coroutine functions. A failing
    callback is logged and never affects the other observers.

    Keys: workflow_started, agent_response, workflow_completed, error,
    health_update.
    """

    def __init__(self, name: str = "EventBus"):
        self.name = name
        self.hub = Hub()
        self._subscriptions: Dict[int, _Subscription] = {}
        self._next_id = 0
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._published_count: Dict[str, int] = {}
        self._shutdown = False
        self.logger = logger.bind(component=name)

    def subscribe(self, callback: EventCallback) -> Callable[[], Awaitable[bool]]:
        """
        Register a callback for every event. Needs a running event loop.

        Args:
            callback: Function or coroutine function receiving each
                OrchestrationEvent

        Returns:
            Coroutine function that removes the subscription when awaited
        """
        if self._shutdown:
            raise RuntimeError("Cannot subscribe - bus is shut down")

        self._next_id += 1
        subscription_id = self._next_id
        subscriber = Subscriber(self.hub, f"{self.name}-{subscription_id}")
        subscription = _Subscription(subscriber, callback)

        subscriber.subscribe(ALL_EVENTS)
        if inspect.iscoroutinefunction(callback):

            async def async_listener(key, event):
                try:
                    if subscription.active:
                        await callback(event)
                except Exception as e:
                    self._log_callback_error(event, e)
                finally:
                    self._delivered(subscription)

            subscriber.add_async_listener(ALL_EVENTS, async_listener)
        else:

            def sync_listener(key, event):
                try:
                    if subscription.active:
                        callback(event)
                except Exception as e:
                    self._log_callback_error(event, e)
                finally:
                    self._delivered(subscription)

            subscriber.add_sync_listener(ALL_EVENTS, sync_listener)

        self._subscriptions[subscription_id] = subscription
        self.logger.debug(f"Subscriber added ({len(self._subscriptions)} total)")

        async def unsubscribe() -> bool:
            return await self._remove(subscription_id)

        return unsubscribe

    async def unsubscribe(self, callback: EventCallback) -> bool:
        """Remove the first subscription registered with callback."""
        for subscription_id, subscription in list(self._subscriptions.items()):
            if subscription.callback == callback:
                return await self._remove(subscription_id)
        return False

    async def _remove(self, subscription_id: int) -> bool:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False

        # Queued but undelivered events are dropped with the listener
        subscription.active = False
        self._outstanding -= subscription.pending
        subscription.pending = 0
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()

        subscription.subscriber.unsubscribe(ALL_EVENTS)
        await subscription.subscriber.remove_all_listeners()
        return True

    def publish(self, event: OrchestrationEvent) -> None:
        """Publish an event under the key of its type."""
        if self._shutdown:
            self.logger.warning(f"Cannot publish {event.type.value} - bus is shut down")
            return

        self._published_count[event.type.value] = self._published_count.get(event.type.value, 0) + 1

        for subscription in self._subscriptions.values():
            subscription.pending += 1
            self._outstanding += 1
        if self._outstanding:
            self._idle.clear()

        self.hub.publish(Key(event.type.value), event)

    def emit(self, event_type: EventType, request_id: str = "", **data: Any) -> OrchestrationEvent:
        """Build and publish an event in one call."""
        event = OrchestrationEvent(type=event_type, request_id=request_id, data=data)
        self.publish(event)
        return event

    def _delivered(self, subscription: _Subscription) -> None:
        if not subscription.active or subscription.pending == 0:
            return
        subscription.pending -= 1
        self._outstanding -= 1
        if self._outstanding == 0:
            self._idle.set()

    def _log_callback_error(self, event: OrchestrationEvent, error: Exception) -> None:
        self.logger.error(
            f"Event callback error for {event.type.value}: {error}",
            request_id=event.request_id,
        )

    async def drain(self) -> None:
        """Wait until every published event reached every current observer."""
        await self._idle.wait()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "subscribers": len(self._subscriptions),
            "pending_deliveries": self._outstanding,
            "published": dict(self._published_count),
        }

    async def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop accepting events, deliver what is queued and detach every listener."""
        if self._shutdown:
            return

        self._shutdown = True
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"{self._outstanding} event deliveries still pending at shutdown")

        for subscription_id in list(self._subscriptions):
            await self._remove(subscription_id)
        self.logger.info(f"{self.name} shutdown complete")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
