"""
Scenario Engine.

Runs a named scenario by scheduling every step as its own deferred asyncio
task, offset from the invocation start. Invocation returns as soon as the
tasks exist; each run is tracked by a ScenarioRun handle whose ``wait()``
resolves once every step has fired.

Overlapping runs are not serialized. When two runs touch the same
(service, fault) cell, whichever step fires last wins.
"""

import asyncio
from collections import deque
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from chaos_controller.chaos.errors import UnknownScenario
from chaos_controller.chaos.models import (
    FaultKind,
    Scenario,
    ScenarioRunStatus,
    ScenarioStep,
    ServiceName,
)
from chaos_controller.chaos.store import FaultStateStore
from chaos_controller.logging import get_logger, run_context
from chaos_controller.runtime.event_bus import Event, EventBus, EventType
from chaos_controller.telemetry import get_tracer

logger = get_logger(__name__)


CASCADING_FAILURE = Scenario(
    name="cascading",
    description="Sequential failure across all services",
    started_status="cascading_failure_started",
    steps=(
        ScenarioStep(delay_ms=0, service=ServiceName.CLAIMS, fault=FaultKind.HIGH_LATENCY),
        ScenarioStep(delay_ms=2000, service=ServiceName.POLICY, fault=FaultKind.HIGH_LATENCY),
        ScenarioStep(delay_ms=4000, service=ServiceName.CLAIMS, fault=FaultKind.DB_FAILURE),
        ScenarioStep(delay_ms=6000, service=ServiceName.INVESTMENT, fault=FaultKind.SERVICE_CRASH),
        ScenarioStep(delay_ms=8000, service=ServiceName.NOTIFICATION, fault=FaultKind.SERVICE_CRASH),
    ),
)

SCENARIOS: dict[str, Scenario] = {
    CASCADING_FAILURE.name: CASCADING_FAILURE,
}


def generate_run_id(scenario: str) -> str:
    """
    Generate a unique scenario run ID.

    Format: {scenario}_{timestamp}_{uuid8}
    """
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    return f"{scenario}_{timestamp}_{uuid4().hex[:8]}"


class ScenarioRun:
    """Handle for one scenario invocation."""

    def __init__(self, run_id: str, scenario: Scenario) -> None:
        self.run_id = run_id
        self.scenario = scenario
        self.started_at = datetime.now(UTC)
        self.completed_at: datetime | None = None
        self.steps_fired = 0
        self.step_tasks: list[asyncio.Task[None]] = []
        self._completion: asyncio.Task[None] | None = None

    @property
    def status(self) -> ScenarioRunStatus:
        if self.completed_at is not None:
            return ScenarioRunStatus.COMPLETED
        return ScenarioRunStatus.SCHEDULED

    @property
    def steps_total(self) -> int:
        return len(self.scenario.steps)

    @property
    def done(self) -> bool:
        return self.status == ScenarioRunStatus.COMPLETED

    async def wait(self) -> None:
        """Block until every step of this run has fired."""
        if self._completion is not None:
            await asyncio.shield(self._completion)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scenario": self.scenario.name,
            "status": self.status.value,
            "steps_total": self.steps_total,
            "steps_fired": self.steps_fired,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ScenarioEngine:
    """
    Schedules scenario steps against a FaultStateStore.

    Steps hold no lock while waiting; they take the store's lock only when
    they fire.
    """

    def __init__(
        self,
        store: FaultStateStore,
        catalogue: dict[str, Scenario] | None = None,
        time_scale: float = 1.0,
        history_size: int = 50,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._catalogue = dict(catalogue if catalogue is not None else SCENARIOS)
        self._time_scale = time_scale
        self._event_bus = event_bus
        self._runs: deque[ScenarioRun] = deque(maxlen=history_size)
        # Unfinished step and completion tasks of every run, in history or not
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def catalogue(self) -> dict[str, Scenario]:
        return dict(self._catalogue)

    @property
    def pending_tasks(self) -> int:
        return len(self._pending)

    @property
    def runs(self) -> list[ScenarioRun]:
        """Recent runs, oldest first."""
        return list(self._runs)

    def get_scenario(self, name: str) -> Scenario:
        try:
            return self._catalogue[name]
        except KeyError:
            raise UnknownScenario(name) from None

    async def start(self, name: str) -> ScenarioRun:
        """
        Schedule every step of a catalogued scenario and return immediately.

        Raises:
            UnknownScenario: name not in the catalogue
        """
        return await self.run(self.get_scenario(name))

    async def run(self, scenario: Scenario) -> ScenarioRun:
        """Schedule every step of ``scenario`` and return the run handle."""
        run = ScenarioRun(generate_run_id(scenario.name), scenario)

        with run_context(run.run_id):
            logger.warning("Scenario '%s' triggered (%d steps)", scenario.name, run.steps_total)
            run.step_tasks = [
                self._track(asyncio.create_task(self._fire_after(run, step), name=f"{run.run_id}:{i}"))
                for i, step in enumerate(scenario.steps)
            ]
            run._completion = self._track(
                asyncio.create_task(self._complete(run), name=f"{run.run_id}:done")
            )

        self._runs.append(run)
        await self._publish(
            EventType.SCENARIO_STARTED,
            {"scenario": scenario.name, "steps": run.steps_total},
            run.run_id,
        )
        return run

    def _track(self, task: asyncio.Task[None]) -> asyncio.Task[None]:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _fire_after(self, run: ScenarioRun, step: ScenarioStep) -> None:
        await asyncio.sleep(step.delay_ms / 1000.0 * self._time_scale)

        tracer = get_tracer()
        with tracer.start_as_current_span("chaos_scenario_step") as span:
            span.set_attribute("chaos.scenario", run.scenario.name)
            span.set_attribute("chaos.service", step.service.value)
            span.set_attribute("chaos.fault", step.fault.value)
            span.set_attribute("chaos.enabled", step.enabled)
            try:
                await self._store.toggle(step.service, step.fault, step.enabled)
            except Exception:
                logger.exception(
                    "Scenario step %s.%s failed in run %s",
                    step.service.value,
                    step.fault.value,
                    run.run_id,
                )
                return

        run.steps_fired += 1
        logger.warning("Cascade step: %s.%s triggered", step.service.value, step.fault.value)
        await self._publish(
            EventType.SCENARIO_STEP_FIRED,
            {
                "scenario": run.scenario.name,
                "service": step.service.value,
                "fault": step.fault.value,
                "enabled": step.enabled,
            },
            run.run_id,
        )

    async def _complete(self, run: ScenarioRun) -> None:
        await asyncio.gather(*run.step_tasks, return_exceptions=True)
        run.completed_at = datetime.now(UTC)
        logger.info("Scenario '%s' run %s completed", run.scenario.name, run.run_id)
        await self._publish(
            EventType.SCENARIO_COMPLETED,
            {"scenario": run.scenario.name, "steps_fired": run.steps_fired},
            run.run_id,
        )

    async def shutdown(self) -> None:
        """Cancel steps that have not fired yet, including runs already dropped from history."""
        pending = [task for task in self._pending if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Cancelled %d pending scenario tasks", len(pending))

    async def _publish(self, event_type: EventType, data: dict[str, Any], run_id: str) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data, run_id=run_id))
