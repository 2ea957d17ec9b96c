"""
Chaos API routes.

Toggle, reset and scenario endpoints plus the reconciled status view.
Downstream failures never turn into request failures here: the response
always reflects the locally applied intent.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Request

from chaos_controller.chaos.coordinator import ChaosCoordinator
from chaos_controller.chaos.models import (
    ALL_SERVICES,
    DriftResponse,
    ResetResponse,
    ScenarioStartedResponse,
    StateResponse,
    StatusResponse,
    ToggleRequest,
    ToggleResponse,
)
from chaos_controller.logging import get_logger
from chaos_controller.telemetry import get_tracer

router = APIRouter(prefix="/chaos", tags=["Chaos"])
logger = get_logger(__name__)


def get_coordinator(request: Request) -> ChaosCoordinator:
    """Coordinator owned by the running application."""
    return request.app.state.coordinator


# =============================================================================
# State
# =============================================================================


@router.get("/status", response_model=StatusResponse)
async def get_status(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> StatusResponse:
    """
    Live health and self-reported chaos per service, next to MasterState.

    Unreachable services are reported unhealthy with their local state.
    """
    return await coordinator.status.get_status()


@router.get("/state", response_model=StateResponse)
async def get_state(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> StateResponse:
    """MasterState only; no downstream calls."""
    return StateResponse(masterState=coordinator.store.snapshot())


@router.get("/drift", response_model=DriftResponse)
async def get_drift(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> DriftResponse:
    """Flags where a healthy service reports something other than local intent."""
    divergence = await coordinator.status.divergence()
    if divergence:
        logger.warning("Chaos drift detected on %d flag(s)", len(divergence))
    return DriftResponse(divergence=divergence, checked_at=datetime.now(UTC))


@router.post("/toggle", response_model=ToggleResponse)
async def toggle(
    body: ToggleRequest,
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> ToggleResponse:
    """
    Set one fault flag on one service, or on every service with "all".

    Returns 400 for an unknown service or fault.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span("chaos_toggle") as span:
        span.set_attribute("chaos.service", body.service)
        span.set_attribute("chaos.fault", body.fault)
        span.set_attribute("chaos.enabled", body.enabled)

        if body.service == ALL_SERVICES:
            result = await coordinator.store.toggle_all(body.fault, body.enabled)
        else:
            result = await coordinator.store.toggle(body.service, body.fault, body.enabled)

        if not result.all_propagated:
            span.set_attribute("chaos.failed_services", result.failed_services)

    logger.warning("Chaos toggle: %s.%s = %s", body.service, body.fault, body.enabled)
    return ToggleResponse(masterState=result.state)


@router.post("/reset", response_model=ResetResponse)
async def reset(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> ResetResponse:
    """Clear every flag everywhere and push the cleared state to each service."""
    result = await coordinator.store.reset()
    return ResetResponse(masterState=result.state)


# =============================================================================
# Scenarios
# =============================================================================


@router.get("/scenarios")
async def list_scenarios(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Catalogue of runnable scenarios."""
    return {
        "scenarios": [
            {
                "name": s.name,
                "description": s.description,
                "duration_ms": s.duration_ms,
                "steps": [step.model_dump(mode="json") for step in s.steps],
            }
            for s in coordinator.scenarios.catalogue.values()
        ]
    }


@router.get("/scenario/runs")
async def list_scenario_runs(
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Recent scenario runs, newest first."""
    runs = [run.to_dict() for run in reversed(coordinator.scenarios.runs)]
    return {"runs": runs, "count": len(runs)}


@router.post("/scenario/{name}", response_model=ScenarioStartedResponse)
async def start_scenario(
    name: str,
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> ScenarioStartedResponse:
    """
    Schedule every step of a scenario and return immediately.

    Returns 404 for an unknown scenario name.
    """
    run = await coordinator.scenarios.start(name)
    return ScenarioStartedResponse(status=run.scenario.started_status, steps=run.steps_total)
