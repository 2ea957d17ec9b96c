"""
Coordinator: wires the chaos core for one application instance.

Request handlers receive the coordinator through a FastAPI dependency, so
every app (and every test) owns its own MasterState.
"""

from dataclasses import dataclass

from chaos_controller.chaos.propagator import Propagator
from chaos_controller.chaos.registry import ServiceRegistry
from chaos_controller.chaos.scenarios import ScenarioEngine
from chaos_controller.chaos.status import StatusAggregator
from chaos_controller.chaos.store import FaultStateStore
from chaos_controller.config import Settings
from chaos_controller.runtime.event_bus import EventBus


@dataclass
class ChaosCoordinator:
    """Container for the chaos core components."""

    settings: Settings
    registry: ServiceRegistry
    event_bus: EventBus
    propagator: Propagator
    store: FaultStateStore
    status: StatusAggregator
    scenarios: ScenarioEngine

    async def aclose(self) -> None:
        """Cancel pending scenario steps and release the HTTP client."""
        await self.scenarios.shutdown()
        await self.propagator.close()


def build_coordinator(settings: Settings) -> ChaosCoordinator:
    """Build a fresh coordinator with an all-false MasterState."""
    registry = ServiceRegistry.from_settings(settings)
    event_bus = EventBus()
    propagator = Propagator(
        registry,
        timeout_s=settings.propagate_timeout_s,
        history_size=settings.propagation_history_size,
        event_bus=event_bus,
    )
    store = FaultStateStore(registry, propagator, event_bus=event_bus)
    status = StatusAggregator(registry, store, timeout_s=settings.status_timeout_s)
    scenarios = ScenarioEngine(
        store,
        time_scale=settings.scenario_time_scale,
        history_size=settings.scenario_run_history_size,
        event_bus=event_bus,
    )
    return ChaosCoordinator(
        settings=settings,
        registry=registry,
        event_bus=event_bus,
        propagator=propagator,
        store=store,
        status=status,
        scenarios=scenarios,
    )
