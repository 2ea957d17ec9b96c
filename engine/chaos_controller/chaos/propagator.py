"""
Propagator: pushes fault-state deltas to downstream chaos endpoints.

Delivery is best-effort and at-most-once. Every attempt produces a
PropagationResult; failures are logged and returned, never raised, and
never undo the local mutation that triggered them.
"""

import time
from collections import deque
from collections.abc import Mapping

import httpx
from opentelemetry.propagate import inject

from chaos_controller.chaos.errors import UnreachableService
from chaos_controller.chaos.models import FaultState, PropagationResult, ServiceName
from chaos_controller.chaos.registry import ServiceRegistry
from chaos_controller.logging import get_logger
from chaos_controller.runtime.event_bus import Event, EventBus, EventType
from chaos_controller.telemetry import get_tracer

logger = get_logger(__name__)


class Propagator:
    """
    Async client for the downstream ``POST /chaos/set`` endpoints.

    Shares one httpx.AsyncClient across calls; the client is created lazily
    and recreated if it was closed.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        timeout_s: float = 5.0,
        history_size: int = 200,
        event_bus: EventBus | None = None,
    ) -> None:
        self._registry = registry
        self._timeout = timeout_s
        self._event_bus = event_bus
        self._client: httpx.AsyncClient | None = None
        self._history: deque[PropagationResult] = deque(maxlen=history_size)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def history(self) -> list[PropagationResult]:
        """Recent propagation results, oldest first."""
        return list(self._history)

    async def propagate(self, service: ServiceName, delta: Mapping[str, bool]) -> PropagationResult:
        """
        Send a fault-state delta to one service.

        Args:
            service: Target service (must be registered)
            delta: Flags to set; need not be a full FaultState

        Returns:
            PropagationResult describing the attempt. Never raises for
            network or HTTP errors.
        """
        url = self._registry.chaos_url(service)
        payload: FaultState = dict(delta)
        tracer = get_tracer()

        with tracer.start_as_current_span("chaos_propagate") as span:
            span.set_attribute("chaos.service", service.value)
            span.set_attribute("http.url", url)

            headers: dict[str, str] = {}
            inject(headers)

            start = time.perf_counter()
            status_code: int | None = None
            error: str | None = None
            try:
                client = await self._get_client()
                response = await client.post(url, json=payload, headers=headers)
                status_code = response.status_code
                response.raise_for_status()
            except httpx.TimeoutException as e:
                error = UnreachableService(service.value, f"timeout ({e.__class__.__name__})").message
            except httpx.HTTPStatusError as e:
                error = UnreachableService(service.value, f"HTTP {e.response.status_code}").message
            except httpx.HTTPError as e:
                error = UnreachableService(service.value, str(e) or e.__class__.__name__).message
            latency_ms = round((time.perf_counter() - start) * 1000, 2)

            result = PropagationResult(
                service=service,
                url=url,
                delta=payload,
                ok=error is None,
                status_code=status_code,
                error=error,
                latency_ms=latency_ms,
            )
            span.set_attribute("chaos.propagated", result.ok)
            if status_code is not None:
                span.set_attribute("http.status_code", status_code)

        self._history.append(result)

        if result.ok:
            logger.info("Chaos propagated to %s: %s", service.value, payload)
        else:
            logger.error("Failed to propagate chaos to %s: %s", service.value, error)

        await self._publish(result)
        return result

    async def _publish(self, result: PropagationResult) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            Event(
                type=EventType.CHAOS_PROPAGATED if result.ok else EventType.CHAOS_PROPAGATION_FAILED,
                data=result.model_dump(mode="json"),
            )
        )
