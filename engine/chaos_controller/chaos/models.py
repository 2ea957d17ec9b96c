"""
Chaos models.

Enumerations for the fixed service/fault registries, scenario definitions,
propagation outcomes and the request/response bodies of the HTTP API.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ALL_SERVICES = "all"


class ServiceName(str, Enum):
    """Downstream services under chaos control."""

    CLAIMS = "claims"
    POLICY = "policy"
    INVESTMENT = "investment"
    NOTIFICATION = "notification"


class FaultKind(str, Enum):
    """Fault modes each downstream service knows how to inject."""

    SERVICE_CRASH = "service_crash"
    HIGH_LATENCY = "high_latency"
    DB_FAILURE = "db_failure"
    MEMORY_SPIKE = "memory_spike"
    CPU_SPIKE = "cpu_spike"


# Plain-string views used as JSON keys
FaultState = dict[str, bool]
MasterState = dict[str, FaultState]


def empty_fault_state() -> FaultState:
    """A FaultState with every known fault disabled."""
    return {fault.value: False for fault in FaultKind}


class ScenarioStep(BaseModel):
    """One delayed toggle inside a scenario."""

    model_config = ConfigDict(frozen=True)

    delay_ms: int = Field(ge=0)
    service: ServiceName
    fault: FaultKind
    enabled: bool = True


class Scenario(BaseModel):
    """A named, time-ordered sequence of toggles."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    started_status: str
    steps: tuple[ScenarioStep, ...]

    @property
    def duration_ms(self) -> int:
        """Offset of the last step to fire."""
        return max((s.delay_ms for s in self.steps), default=0)


class ScenarioRunStatus(str, Enum):
    """
    Scenario invocation lifecycle.

    SCHEDULED -> COMPLETED. There is no abort transition.
    """

    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class PropagationResult(BaseModel):
    """Outcome of a single push to a service's chaos endpoint."""

    model_config = ConfigDict(frozen=True)

    service: ServiceName
    url: str
    delta: FaultState
    ok: bool
    status_code: int | None = None
    error: str | None = None
    latency_ms: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ApplyResult(BaseModel):
    """
    Result of a store mutation.

    ``state`` always holds the locally applied intent; ``propagations``
    records what happened downstream and never affects ``state``.
    """

    state: MasterState
    propagations: list[PropagationResult] = Field(default_factory=list)

    @property
    def all_propagated(self) -> bool:
        return all(p.ok for p in self.propagations)

    @property
    def failed_services(self) -> list[str]:
        return [p.service.value for p in self.propagations if not p.ok]


class RemoteStatus(BaseModel):
    """What a service reported about itself during a status query."""

    healthy: bool
    chaos: dict[str, Any] = Field(default_factory=dict)


class DivergenceItem(BaseModel):
    """A flag where remote-reported state differs from local intent."""

    service: ServiceName
    fault: FaultKind
    intended: bool
    reported: bool


# =============================================================================
# API bodies
# =============================================================================


class ToggleRequest(BaseModel):
    """Body of POST /chaos/toggle."""

    service: str = Field(description='Registered service name or "all"')
    fault: str = Field(description="Fault kind to toggle")
    enabled: bool


class ToggleResponse(BaseModel):
    status: str = "updated"
    masterState: MasterState


class ResetResponse(BaseModel):
    status: str = "reset"
    masterState: MasterState


class ScenarioStartedResponse(BaseModel):
    status: str
    steps: int


class StatusResponse(BaseModel):
    services: dict[str, RemoteStatus]
    masterState: MasterState


class StateResponse(BaseModel):
    masterState: MasterState


class DriftResponse(BaseModel):
    divergence: list[DivergenceItem]
    checked_at: datetime
