"""
Chaos core: fault state, propagation, status aggregation and scenarios.
"""

from chaos_controller.chaos.coordinator import ChaosCoordinator, build_coordinator
from chaos_controller.chaos.errors import (
    ChaosError,
    UnknownFault,
    UnknownScenario,
    UnknownService,
    UnreachableService,
)
from chaos_controller.chaos.models import (
    ApplyResult,
    FaultKind,
    PropagationResult,
    Scenario,
    ScenarioStep,
    ServiceName,
)

__all__ = [
    # Wiring
    "ChaosCoordinator",
    "build_coordinator",
    # Errors
    "ChaosError",
    "UnknownFault",
    "UnknownScenario",
    "UnknownService",
    "UnreachableService",
    # Models
    "ApplyResult",
    "FaultKind",
    "PropagationResult",
    "Scenario",
    "ScenarioStep",
    "ServiceName",
]
