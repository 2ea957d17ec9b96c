"""
Event bus for internal pub/sub messaging.

Decouples the chaos core from the dashboard WebSocket fan-out.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from chaos_controller.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Types of events in the system."""

    # Lifecycle events
    CONTROLLER_STARTED = "controller.started"
    CONTROLLER_STOPPED = "controller.stopped"

    # State events
    CHAOS_TOGGLED = "chaos.toggled"
    CHAOS_RESET = "chaos.reset"

    # Propagation events
    CHAOS_PROPAGATED = "chaos.propagated"
    CHAOS_PROPAGATION_FAILED = "chaos.propagation_failed"

    # Scenario events
    SCENARIO_STARTED = "scenario.started"
    SCENARIO_STEP_FIRED = "scenario.step_fired"
    SCENARIO_COMPLETED = "scenario.completed"


@dataclass
class Event:
    """
    A chaos event.

    ``run_id`` ties scenario events to one scenario invocation.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    run_id: str | None = None

    def __hash__(self) -> int:
        return hash(self.id)

    def to_message(self) -> dict[str, Any]:
        """Flatten into the shape sent to WebSocket clients."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    In-process fan-out of chaos events.

    Handlers are keyed by event type; the ``None`` key holds wildcard
    handlers that see every event. A failing handler is logged and never
    affects the publisher or the other handlers.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType | None, list[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return sum(len(handlers) for handlers in self._subscribers.values())

    async def subscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        """Register ``handler`` for one event type, or for all with ``None``."""
        async with self._lock:
            self._subscribers[event_type].append(handler)

    async def unsubscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        async with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    async def publish(self, event: Event) -> None:
        """Deliver ``event`` to its typed handlers, then the wildcard ones."""
        async with self._lock:
            targets = [*self._subscribers.get(event.type, []), *self._subscribers.get(None, [])]
        if not targets:
            return

        outcomes = await asyncio.gather(*(handler(event) for handler in targets), return_exceptions=True)
        for handler, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Event handler %s failed on %s: %s",
                    getattr(handler, "__name__", repr(handler)),
                    event.type.value,
                    outcome,
                )

    async def clear(self) -> None:
        async with self._lock:
            self._subscribers.clear()
