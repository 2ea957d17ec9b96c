"""
Fault State Store.

Holds MasterState, the coordinator's intended fault flags for every
registered service. Local mutation always succeeds first; propagation
happens afterwards and its outcome is reported next to, not instead of,
the new state.
"""

import asyncio
import copy

from chaos_controller.chaos.models import (
    ApplyResult,
    FaultKind,
    FaultState,
    MasterState,
    PropagationResult,
    ServiceName,
    empty_fault_state,
)
from chaos_controller.chaos.propagator import Propagator
from chaos_controller.chaos.registry import ServiceRegistry, resolve_fault
from chaos_controller.logging import get_logger
from chaos_controller.runtime.event_bus import Event, EventBus, EventType

logger = get_logger(__name__)


class FaultStateStore:
    """
    In-memory MasterState with lock-guarded mutation.

    The lock covers only the in-memory update. It is never held across a
    propagation round-trip, so concurrent toggles proceed while a slow
    service is being contacted.

    Batch operations (toggle_all, reset) apply all their local changes under
    one lock acquisition, then propagate to every service concurrently.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        propagator: Propagator,
        event_bus: EventBus | None = None,
    ) -> None:
        self._registry = registry
        self._propagator = propagator
        self._event_bus = event_bus
        self._lock = asyncio.Lock()
        self._state: MasterState = {name.value: empty_fault_state() for name in registry}

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    def snapshot(self) -> MasterState:
        """
        Copy of MasterState for read-only use.

        Mutations happen in a single synchronous block under the lock, so a
        copy taken between awaits never contains a half-applied update.
        """
        return copy.deepcopy(self._state)

    def get(self, service: ServiceName | str) -> FaultState:
        """Copy of one service's FaultState."""
        name = self._registry.resolve(service)
        return dict(self._state[name.value])

    async def toggle(
        self,
        service: ServiceName | str,
        fault: FaultKind | str,
        enabled: bool,
    ) -> ApplyResult:
        """
        Set one flag on one service and propagate it.

        Raises:
            UnknownService: service not registered
            UnknownFault: fault kind not recognised
        """
        name = self._registry.resolve(service)
        kind = resolve_fault(fault)

        async with self._lock:
            self._state[name.value][kind.value] = enabled
            state = self.snapshot()

        result = await self._propagator.propagate(name, {kind.value: enabled})
        await self._publish(
            EventType.CHAOS_TOGGLED,
            {"service": name.value, "fault": kind.value, "enabled": enabled},
        )
        return ApplyResult(state=state, propagations=[result])

    async def toggle_all(self, fault: FaultKind | str, enabled: bool) -> ApplyResult:
        """
        Set one flag on every registered service.

        One service's propagation failure never blocks the others.

        Raises:
            UnknownFault: fault kind not recognised
        """
        kind = resolve_fault(fault)

        async with self._lock:
            for name in self._registry:
                self._state[name.value][kind.value] = enabled
            state = self.snapshot()

        results = await self._propagate_many(
            {name: {kind.value: enabled} for name in self._registry}
        )
        await self._publish(
            EventType.CHAOS_TOGGLED,
            {"service": "all", "fault": kind.value, "enabled": enabled},
        )
        return ApplyResult(state=state, propagations=results)

    async def reset(self) -> ApplyResult:
        """Clear every flag on every service and push the full cleared state."""
        async with self._lock:
            for name in self._registry:
                self._state[name.value] = empty_fault_state()
            state = self.snapshot()

        results = await self._propagate_many({name: state[name.value] for name in self._registry})
        logger.info("All chaos reset")
        await self._publish(EventType.CHAOS_RESET, {})
        return ApplyResult(state=state, propagations=results)

    async def _propagate_many(self, deltas: dict[ServiceName, FaultState]) -> list[PropagationResult]:
        return list(
            await asyncio.gather(
                *[self._propagator.propagate(name, delta) for name, delta in deltas.items()]
            )
        )

    async def _publish(self, event_type: EventType, data: dict) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data))
