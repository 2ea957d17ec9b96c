"""
Tests for tracing bootstrap, manual chaos spans and trace context forwarding.

Spans are captured with an in-memory exporter installed as the module's
provider, so the process-wide tracer provider is never replaced.
"""

import asyncio
from collections.abc import Generator
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind
from respx import MockRouter

from chaos_controller import telemetry
from chaos_controller.chaos.models import (
    FaultKind,
    PropagationResult,
    Scenario,
    ScenarioStep,
    ServiceName,
)
from chaos_controller.chaos.propagator import Propagator
from chaos_controller.chaos.registry import ServiceRegistry
from chaos_controller.chaos.scenarios import ScenarioEngine
from chaos_controller.chaos.status import StatusAggregator
from chaos_controller.chaos.store import FaultStateStore
from chaos_controller.telemetry import (
    get_tracer,
    instrument_app,
    parse_otlp_headers,
    setup_tracing,
    shutdown_tracing,
)
from tests.api_fixtures import make_settings

COLLECTOR = "http://collector.test:4318"

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def span_exporter(monkeypatch: pytest.MonkeyPatch) -> Generator[InMemorySpanExporter, None, None]:
    """Collect chaos spans in memory through the module's tracer provider."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(telemetry, "_provider", provider)
    yield exporter
    exporter.clear()


@pytest.fixture
def store(registry: ServiceRegistry) -> FaultStateStore:
    propagator = AsyncMock()
    propagator.propagate = AsyncMock(
        side_effect=lambda service, delta: PropagationResult(
            service=service, url="http://test/chaos/set", delta=delta, ok=True
        )
    )
    return FaultStateStore(registry, propagator)


def _span(exporter: InMemorySpanExporter, name: str) -> ReadableSpan:
    matching = [s for s in exporter.get_finished_spans() if s.name == name]
    assert len(matching) == 1, [s.name for s in exporter.get_finished_spans()]
    return matching[0]


def _traceparent(span: ReadableSpan) -> str:
    return f"00-{span.context.trace_id:032x}-{span.context.span_id:016x}-01"


# =============================================================================
# Test Classes
# =============================================================================


class TestParseOtlpHeaders:
    """OTEL_EXPORTER_OTLP_HEADERS parsing."""

    def test_empty(self) -> None:
        assert parse_otlp_headers(None) == {}
        assert parse_otlp_headers("") == {}

    def test_multiple_pairs(self) -> None:
        assert parse_otlp_headers("x-api-key=abc, x-team = chaos") == {
            "x-api-key": "abc",
            "x-team": "chaos",
        }

    def test_value_may_contain_equals(self) -> None:
        assert parse_otlp_headers("authorization=Basic dXNlcjpwYXNz==") == {
            "authorization": "Basic dXNlcjpwYXNz==",
        }

    def test_invalid_entries_skipped(self) -> None:
        assert parse_otlp_headers("novalue,=orphan,key=value") == {"key": "value"}


class TestSetupTracing:
    """Provider lifecycle."""

    def test_disabled_without_endpoint(self) -> None:
        assert setup_tracing(make_settings()) is None
        assert telemetry._provider is None

    def test_tracer_available_when_disabled(self) -> None:
        tracer = get_tracer()
        with tracer.start_as_current_span("chaos_toggle") as span:
            span.set_attribute("chaos.service", "claims")

    def test_setup_and_shutdown_round_trip(self, monkeypatch: pytest.MonkeyPatch) -> None:
        installed = Mock()
        monkeypatch.setattr(telemetry.trace, "set_tracer_provider", installed)
        settings = make_settings(
            otel_exporter_otlp_endpoint=f"{COLLECTOR}/",
            otel_exporter_otlp_headers="x-api-key=secret",
        )

        provider = setup_tracing(settings)
        try:
            assert provider is not None
            assert telemetry._provider is provider
            installed.assert_called_once_with(provider)
            assert setup_tracing(settings) is provider
            assert HTTPXClientInstrumentor().is_instrumented_by_opentelemetry
            flush = Mock(wraps=provider.force_flush)
            monkeypatch.setattr(provider, "force_flush", flush)
        finally:
            shutdown_tracing()

        flush.assert_called_once()
        assert telemetry._provider is None
        assert not HTTPXClientInstrumentor().is_instrumented_by_opentelemetry

    def test_shutdown_flushes_batched_spans(self, monkeypatch: pytest.MonkeyPatch) -> None:
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(BatchSpanProcessor(exporter, schedule_delay_millis=60_000))
        monkeypatch.setattr(telemetry, "_provider", provider)

        with get_tracer().start_as_current_span("chaos_toggle"):
            pass
        shutdown_tracing()

        assert [s.name for s in exporter.get_finished_spans()] == ["chaos_toggle"]
        assert telemetry._provider is None

    def test_shutdown_without_provider_is_noop(self) -> None:
        shutdown_tracing()
        assert telemetry._provider is None


class TestChaosSpans:
    """Manual spans around toggles, propagation and scenario steps."""

    def test_toggle_span(self, span_exporter: InMemorySpanExporter, api_client: TestClient) -> None:
        api_client.post("/chaos/toggle", json={"service": "policy", "fault": "db_failure", "enabled": True})

        toggle = _span(span_exporter, "chaos_toggle")
        assert toggle.attributes["chaos.service"] == "policy"
        assert toggle.attributes["chaos.fault"] == "db_failure"
        assert toggle.attributes["chaos.enabled"] is True

        propagate = _span(span_exporter, "chaos_propagate")
        assert propagate.parent.span_id == toggle.context.span_id

    @pytest.mark.asyncio
    async def test_propagate_span(
        self, span_exporter: InMemorySpanExporter, registry: ServiceRegistry, downstream: MockRouter
    ) -> None:
        propagator = Propagator(registry, timeout_s=1.0)
        await propagator.propagate(ServiceName.CLAIMS, {"cpu_spike": True})
        await propagator.close()

        span = _span(span_exporter, "chaos_propagate")
        assert span.attributes["chaos.service"] == "claims"
        assert span.attributes["http.url"] == "http://claims.test/chaos/set"
        assert span.attributes["chaos.propagated"] is True
        assert span.attributes["http.status_code"] == 200

    @pytest.mark.asyncio
    async def test_scenario_step_span(
        self, span_exporter: InMemorySpanExporter, store: FaultStateStore
    ) -> None:
        scenario = Scenario(
            name="blip",
            started_status="blip_started",
            steps=(ScenarioStep(delay_ms=0, service=ServiceName.INVESTMENT, fault=FaultKind.MEMORY_SPIKE),),
        )
        engine = ScenarioEngine(store, time_scale=0.001)

        run = await engine.run(scenario)
        await asyncio.wait_for(run.wait(), timeout=2.0)

        span = _span(span_exporter, "chaos_scenario_step")
        assert span.attributes["chaos.scenario"] == "blip"
        assert span.attributes["chaos.service"] == "investment"
        assert span.attributes["chaos.fault"] == "memory_spike"
        assert span.attributes["chaos.enabled"] is True


class TestTraceContextForwarding:
    """Downstream calls carry W3C trace context when tracing is on."""

    @pytest.mark.asyncio
    async def test_chaos_set_carries_traceparent(
        self, span_exporter: InMemorySpanExporter, registry: ServiceRegistry, downstream: MockRouter
    ) -> None:
        propagator = Propagator(registry, timeout_s=1.0)
        await propagator.propagate(ServiceName.POLICY, {"high_latency": True})
        await propagator.close()

        request = downstream["policy_chaos"].calls.last.request
        assert request.headers["traceparent"] == _traceparent(_span(span_exporter, "chaos_propagate"))

    @pytest.mark.asyncio
    async def test_health_checks_carry_traceparent(
        self,
        span_exporter: InMemorySpanExporter,
        registry: ServiceRegistry,
        store: FaultStateStore,
        downstream: MockRouter,
    ) -> None:
        await StatusAggregator(registry, store, timeout_s=1.0).get_status()

        status = _span(span_exporter, "chaos_status")
        assert status.attributes["chaos.unhealthy"] == 0
        for service in ServiceName:
            request = downstream[f"{service.value}_health"].calls.last.request
            assert request.headers["traceparent"] == _traceparent(status)

    @pytest.mark.asyncio
    async def test_no_traceparent_when_disabled(
        self, registry: ServiceRegistry, downstream: MockRouter
    ) -> None:
        propagator = Propagator(registry, timeout_s=1.0)
        await propagator.propagate(ServiceName.CLAIMS, {"cpu_spike": True})
        await propagator.close()

        assert "traceparent" not in downstream["claims_chaos"].calls.last.request.headers


class TestInstrumentApp:
    """Server spans for inbound requests."""

    def test_skipped_without_endpoint(self) -> None:
        assert instrument_app(FastAPI(), make_settings()) is False

    def test_server_spans_except_health(self) -> None:
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))

        app = FastAPI()

        @app.get("/ping")
        async def ping() -> dict[str, str]:
            return {"status": "pong"}

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        assert instrument_app(app, make_settings(otel_exporter_otlp_endpoint=COLLECTOR), tracer_provider=provider)

        with TestClient(app) as client:
            client.get("/ping")
            client.get("/health")

        server = [s for s in exporter.get_finished_spans() if s.kind == SpanKind.SERVER]
        assert [s.attributes.get("http.route") for s in server] == ["/ping"]
