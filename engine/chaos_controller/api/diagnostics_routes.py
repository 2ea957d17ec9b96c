"""
Diagnostics API routes.

Provides:
- Recent in-memory log records (dashboard activity log)
- Recent propagation outcomes per downstream service
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from chaos_controller.api.chaos_routes import get_coordinator
from chaos_controller.chaos.coordinator import ChaosCoordinator
from chaos_controller.chaos.models import PropagationResult
from chaos_controller.logging import get_in_memory_logs

router = APIRouter(prefix="/diagnostics", tags=["Diagnostics"])


# =============================================================================
# Response Models
# =============================================================================


class LogsDiagnostics(BaseModel):
    """Buffered log records."""

    logs: list[dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    timestamp: str


class PropagationDiagnostics(BaseModel):
    """Recent propagation attempts."""

    results: list[PropagationResult] = Field(default_factory=list)
    failures_by_service: dict[str, int] = Field(default_factory=dict)
    count: int = 0
    timestamp: str


# =============================================================================
# Routes
# =============================================================================


@router.get("/logs", response_model=LogsDiagnostics)
async def get_logs(
    level: str = Query(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"),
    limit: int = Query(default=50, ge=1, le=1000),
) -> LogsDiagnostics:
    """Recent log records at or above ``level``."""
    logs = get_in_memory_logs(level=level, limit=limit)
    return LogsDiagnostics(
        logs=logs,
        count=len(logs),
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/propagations", response_model=PropagationDiagnostics)
async def get_propagations(
    limit: int = Query(default=50, ge=1, le=1000),
    coordinator: ChaosCoordinator = Depends(get_coordinator),
) -> PropagationDiagnostics:
    """Most recent propagation results, newest last."""
    results = coordinator.propagator.history[-limit:]
    failures: dict[str, int] = {}
    for r in results:
        if not r.ok:
            failures[r.service.value] = failures.get(r.service.value, 0) + 1
    return PropagationDiagnostics(
        results=results,
        failures_by_service=failures,
        count=len(results),
        timestamp=datetime.now(UTC).isoformat(),
    )
