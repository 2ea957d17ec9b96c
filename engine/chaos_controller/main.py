"""
Chaos Controller - FastAPI Application

Serves the chaos REST API, the dashboard page and a WebSocket feed of
chaos events. Run with ``chaos-controller``.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from chaos_controller import __version__
from chaos_controller.api import chaos_router, diagnostics_router
from chaos_controller.chaos.coordinator import build_coordinator
from chaos_controller.chaos.errors import ChaosError
from chaos_controller.config import Settings, get_settings, get_settings_dep
from chaos_controller.logging import SERVICE_NAME, get_logger, setup_logging
from chaos_controller.runtime.event_bus import Event, EventType
from chaos_controller.telemetry import instrument_app, setup_tracing, shutdown_tracing

setup_logging(level=get_settings().log_level, json_output=get_settings().log_json)
logger = get_logger(__name__)

DASHBOARD_PAGE = Path(__file__).parent / "static" / "dashboard.html"


class HealthResponse(BaseModel):
    status: str
    service: str


class ConfigResponse(BaseModel):
    """Redacted runtime configuration."""

    version: str
    config: dict[str, Any]


class DashboardFeed:
    """
    Open dashboard sockets that receive every chaos event.

    Sends go out concurrently and each is bounded by ``send_timeout_s``; a
    socket that errors or stalls past it is dropped.
    """

    def __init__(self, send_timeout_s: float = 1.0) -> None:
        self._sockets: set[WebSocket] = set()
        self._send_timeout = send_timeout_s

    def __len__(self) -> int:
        return len(self._sockets)

    def add(self, websocket: WebSocket) -> None:
        self._sockets.add(websocket)
        logger.info("Dashboard attached (%d open)", len(self._sockets))

    def discard(self, websocket: WebSocket) -> None:
        if websocket in self._sockets:
            self._sockets.remove(websocket)
            logger.info("Dashboard detached (%d open)", len(self._sockets))

    async def broadcast(self, event: Event) -> None:
        """Wildcard event bus handler."""
        message = event.to_message()
        await asyncio.gather(*[self._send(websocket, message) for websocket in list(self._sockets)])

    async def _send(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self._send_timeout)
        except TimeoutError:
            logger.warning("Dropping dashboard socket: send stalled for %.1fs", self._send_timeout)
            self.discard(websocket)
        except Exception as exc:
            logger.debug("Dropping dashboard socket: %s", exc)
            self.discard(websocket)

    async def close_all(self) -> None:
        for websocket in list(self._sockets):
            try:
                await websocket.close()
            except RuntimeError:
                # Already closed by the client
                pass
        self._sockets.clear()


feed = DashboardFeed()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tracing and event forwarding up; on the way down, cancel steps and flush spans."""
    settings = get_settings()
    coordinator = app.state.coordinator
    bus = coordinator.event_bus

    setup_tracing(settings)
    for name, url in coordinator.registry.as_dict().items():
        logger.info("Service %s -> %s", name, url)

    await bus.subscribe(None, feed.broadcast)
    logger.debug("Event bus has %d subscriber(s)", bus.subscriber_count)
    await bus.publish(Event(type=EventType.CONTROLLER_STARTED))
    logger.info(
        "Chaos Controller v%s listening on port %d (dashboard at http://localhost:%d)",
        __version__,
        settings.port,
        settings.port,
    )

    try:
        yield
    finally:
        logger.info("Chaos Controller stopping")
        await bus.publish(Event(type=EventType.CONTROLLER_STOPPED))
        await bus.unsubscribe(None, feed.broadcast)
        await coordinator.aclose()
        await feed.close_all()
        shutdown_tracing()


app = FastAPI(
    title="Chaos Controller",
    description="Centralized fault-injection coordinator for the test environment",
    version=__version__,
    lifespan=lifespan,
)
app.state.coordinator = build_coordinator(get_settings())
instrument_app(app, get_settings())
app.include_router(chaos_router)
app.include_router(diagnostics_router)


@app.exception_handler(ChaosError)
async def chaos_error_handler(request: Request, exc: ChaosError) -> JSONResponse:
    """Unknown names become 4xx JSON bodies."""
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness of the controller itself, not of the services it drives."""
    return HealthResponse(status="ok", service=SERVICE_NAME)


@app.get("/config", response_model=ConfigResponse)
async def config(settings: Settings = Depends(get_settings_dep)) -> ConfigResponse:
    """Service registry, timeouts and tracing state. Exporter headers are left out."""
    return ConfigResponse(version=__version__, config=settings.get_redacted_config())


@app.get("/", response_class=FileResponse)
async def dashboard() -> FileResponse:
    return FileResponse(DASHBOARD_PAGE, media_type="text/html")


@app.websocket("/ws")
async def event_feed(websocket: WebSocket) -> None:
    """
    Dashboard activity feed.

    Greets with a ``connected`` message, then relays every chaos event.
    A ``{"type": "ping"}`` message is answered with ``pong``.
    """
    await websocket.accept()
    feed.add(websocket)
    try:
        await websocket.send_json(
            {"type": "connected", "version": __version__, "timestamp": datetime.now(UTC).isoformat()}
        )
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.debug("Ignoring non-JSON dashboard frame")
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now(UTC).isoformat()})
            else:
                logger.debug("Ignoring dashboard message %r", message)
    except WebSocketDisconnect:
        pass
    finally:
        feed.discard(websocket)


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chaos_controller.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
