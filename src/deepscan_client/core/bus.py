"""Event bus for coordinator-wide event publishing and subscription.

Events are defined with type-safe schemas using Pydantic models. Each session
and coordinator owns a :class:`Bus` instance; subscribers run sequentially on
the event loop in subscription order.

Example:
    class StatusUpdatedProps(BaseModel):
        status: str

    StatusUpdated = BusEvent.define("status.updated", StatusUpdatedProps)

    bus = Bus()
    unsubscribe = bus.subscribe(StatusUpdated, lambda payload: print(payload.properties))
    await bus.publish(StatusUpdated, StatusUpdatedProps(status="ok"))
    unsubscribe()
"""

import traceback
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar('T', bound=BaseModel)

# Lazy logger to avoid circular imports
_log: Optional[Any] = None


def _get_log():
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


class BusEvent(Generic[T]):
    """Event definition with type and properties schema.

    Attributes:
        type: Unique event type identifier (e.g., "session.state_changed")
        properties_type: Pydantic model class for event properties
    """

    def __init__(self, event_type: str, properties_type: type[T]):
        self.type = event_type
        self.properties_type = properties_type

    @staticmethod
    def define(event_type: str, properties_type: type[T]) -> 'BusEvent[T]':
        """Define and register a new event type."""
        return BusEvent(event_type, properties_type)


class EventPayload(BaseModel):
    """Payload structure delivered to event subscribers.

    Attributes:
        type: Event type identifier
        properties: Event properties as a dictionary
    """
    type: str
    properties: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


class Bus:
    """Event bus for publishing and subscribing to events."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[SubscriptionCallback]] = {}

    async def publish(self, event: BusEvent[T], properties: T) -> None:
        if not isinstance(properties, event.properties_type):
            if isinstance(properties, dict):
                properties = event.properties_type(**properties)
            else:
                raise TypeError(
                    f"Properties must be instance of {event.properties_type.__name__}"
                )

        payload = EventPayload(
            type=event.type,
            properties=properties.model_dump(mode="json"),
        )

        callbacks: List[SubscriptionCallback] = list(self._subscriptions.get(event.type, []))

        for callback in callbacks:
            try:
                result = callback(payload)
                if hasattr(result, '__await__'):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": str(e),
                    "type": event.type,
                    "traceback": traceback.format_exc(),
                })

    def subscribe(self, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        return self._raw_subscribe(event.type, callback)

    def _raw_subscribe(self, event_type: str, callback: SubscriptionCallback) -> Callable[[], None]:
        self._subscriptions.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(event_type, [])
            if callback in subs:
                subs.remove(callback)

        return unsubscribe
