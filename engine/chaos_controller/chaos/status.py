"""
Status Aggregator.

Polls every registered service's health endpoint and pairs what each one
reports with the local intent. An unreachable service is reported with the
locally held FaultState as its best-known approximation.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import httpx
from opentelemetry.propagate import inject

from chaos_controller.chaos.models import (
    DivergenceItem,
    FaultKind,
    RemoteStatus,
    ServiceName,
    StatusResponse,
)
from chaos_controller.chaos.registry import ServiceRegistry
from chaos_controller.chaos.store import FaultStateStore
from chaos_controller.logging import get_logger
from chaos_controller.telemetry import get_tracer

logger = get_logger(__name__)


class StatusAggregator:
    """Builds the dual remote/local status view on demand."""

    def __init__(
        self,
        registry: ServiceRegistry,
        store: FaultStateStore,
        timeout_s: float = 3.0,
    ) -> None:
        self._registry = registry
        self._store = store
        self._timeout = timeout_s
        self._last_checked: datetime | None = None

    @property
    def last_checked(self) -> datetime | None:
        """Timestamp of the most recent status query."""
        return self._last_checked

    async def get_status(self) -> StatusResponse:
        """
        Query every service in parallel.

        Returns:
            Per-service RemoteStatus plus the MasterState snapshot
        """
        names = self._registry.names
        with get_tracer().start_as_current_span("chaos_status") as span:
            span.set_attribute("chaos.services", [name.value for name in names])
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                remotes = await asyncio.gather(*[self._check(client, name) for name in names])
            span.set_attribute("chaos.unhealthy", sum(not remote.healthy for remote in remotes))

        self._last_checked = datetime.now(UTC)
        return StatusResponse(
            services={name.value: remote for name, remote in zip(names, remotes)},
            masterState=self._store.snapshot(),
        )

    async def _check(self, client: httpx.AsyncClient, service: ServiceName) -> RemoteStatus:
        url = self._registry.health_url(service)
        headers: dict[str, str] = {}
        inject(headers)
        try:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Health check failed for %s: %s", service.value, str(e) or e.__class__.__name__)
            return RemoteStatus(healthy=False, chaos=self._store.get(service))

        return RemoteStatus(healthy=True, chaos=_reported_chaos(response))

    async def divergence(self, report: StatusResponse | None = None) -> list[DivergenceItem]:
        """
        Compare remote-reported flags with local intent.

        Only healthy services, and only the flags they actually report, are
        compared; an unreachable service's entry is the local state itself.
        Nothing is corrected.
        """
        if report is None:
            report = await self.get_status()

        items: list[DivergenceItem] = []
        for name, remote in report.services.items():
            if not remote.healthy:
                continue
            intended = report.masterState.get(name, {})
            for fault in FaultKind:
                reported = remote.chaos.get(fault.value)
                if not isinstance(reported, bool):
                    continue
                if reported != intended.get(fault.value, False):
                    items.append(
                        DivergenceItem(
                            service=ServiceName(name),
                            fault=fault,
                            intended=intended.get(fault.value, False),
                            reported=reported,
                        )
                    )
        return items


def _reported_chaos(response: httpx.Response) -> dict[str, Any]:
    """The ``chaos`` object from a health payload, or {} when absent."""
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("chaos"), dict):
        return body["chaos"]
    return {}
