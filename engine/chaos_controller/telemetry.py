"""
OpenTelemetry tracing bootstrap.

Tracing is enabled only when OTEL_EXPORTER_OTLP_ENDPOINT is configured.
When it is, inbound requests get server spans, outbound httpx calls get
client spans, and W3C trace context is forwarded to the downstream
services. Without it the OpenTelemetry API hands out no-op tracers, so
instrumented code paths run unchanged.
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from chaos_controller import __version__
from chaos_controller.config import Settings
from chaos_controller.logging import SERVICE_NAME as LOG_SERVICE_NAME
from chaos_controller.logging import get_logger

logger = get_logger(__name__)

TRACER_NAME = "chaos-controller"

# Inbound paths that get no server span
EXCLUDED_URLS = "/health"

_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """
    Parse "k1=v1,k2=v2" into a header dict.

    Entries without "=" are skipped; values may themselves contain "=".
    """
    if not raw:
        return {}
    headers: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def setup_tracing(settings: Settings) -> TracerProvider | None:
    """
    Install a global tracer provider exporting spans over OTLP/HTTP.

    Returns:
        The provider, or None when tracing is not configured.
    """
    global _provider
    if not settings.tracing_enabled:
        logger.info("Tracing disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None
    if _provider is not None:
        return _provider

    endpoint = settings.otel_exporter_otlp_endpoint.rstrip("/")
    resource = Resource.create(
        {
            SERVICE_NAME: LOG_SERVICE_NAME,
            "service.version": __version__,
            "service.language": "python",
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=f"{endpoint}/v1/traces",
        headers=parse_otlp_headers(settings.otel_exporter_otlp_headers),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    _provider = provider

    logger.info("Tracing enabled, exporting to %s/v1/traces", endpoint)
    return provider


def shutdown_tracing() -> None:
    """Flush pending spans and stop the exporter."""
    global _provider
    if _provider is None:
        return
    instrumentor = HTTPXClientInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.uninstrument()
    try:
        _provider.force_flush()
    finally:
        _provider.shutdown()
        _provider = None
        logger.info("Tracing exporter flushed and shut down")


def instrument_app(
    app: FastAPI,
    settings: Settings,
    tracer_provider: trace.TracerProvider | None = None,
) -> bool:
    """
    Add server spans to every inbound request except liveness checks.

    Must run before the app starts serving, since it installs middleware.
    Spans go to the global provider, which setup_tracing installs later
    during startup.
    """
    if not settings.tracing_enabled:
        return False
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, excluded_urls=EXCLUDED_URLS)
    return True


def get_tracer() -> trace.Tracer:
    """Tracer used by the chaos core; the installed provider if there is one, else the global one."""
    return trace.get_tracer(TRACER_NAME, tracer_provider=_provider)
