from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence

import structlog

from healthgate.config.schema import UnitSpec
from healthgate.dag.graph import DependencyGraph
from healthgate.exec.launcher import Launcher
from healthgate.exec.supervisor import UnitSupervisor
from healthgate.observe.sinks import EventSink, log_sink
from healthgate.probe.check import ProbeFn, check_unit
from healthgate.state.model import StackResult, StackState, StackStatus, StateEvent

log = structlog.get_logger(__name__)

_STOP = object()


class Orchestrator:
    """Starts a stack of units in dependency order and supervises it.

    Supervisors report through a queue of :class:`StateEvent`; the
    orchestrator only ever decides from the aggregated :class:`StackState`.
    ``run`` returns as soon as the outcome is known (UP, FAILED or
    CANCELLED) while the supervisors keep probing until :meth:`shutdown`.
    """

    def __init__(
        self,
        launcher: Launcher,
        *,
        probe: ProbeFn = check_unit,
        sinks: Sequence[EventSink] = (log_sink,),
    ) -> None:
        self.launcher = launcher
        self.probe = probe
        self.sinks = list(sinks)
        self.graph: DependencyGraph | None = None
        self.stack: StackState | None = None
        self.events: list[StateEvent] = []
        self._supervisors: dict[str, UnitSupervisor] = {}
        self._released: set[str] = set()
        self._queue: asyncio.Queue[object] | None = None
        self._outcome: asyncio.Future[StackStatus] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._stopping = False

    async def run(self, units: Iterable[UnitSpec]) -> StackResult:
        if self._pump_task is not None:
            raise RuntimeError("orchestrator already running")
        unit_list = list(units)
        graph = DependencyGraph.build(unit_list)
        specs = {unit.name: unit for unit in unit_list}

        self.graph = graph
        self.stack = StackState(order=list(graph.order))
        queue: asyncio.Queue[object] = asyncio.Queue()
        self._queue = queue
        self._outcome = asyncio.get_running_loop().create_future()
        self._supervisors = {
            name: UnitSupervisor(
                specs[name], self.launcher, publish=queue.put_nowait, probe=self.probe
            )
            for name in graph.order
        }
        log.info("stack_starting", units=len(graph), order=list(graph.order))
        self._pump_task = asyncio.create_task(self._pump(), name="healthgate-orchestrator")
        if self._stop_requested:
            queue.put_nowait(_STOP)
        else:
            self._schedule()
            self._evaluate()

        try:
            status = await asyncio.shield(self._outcome)
        except asyncio.CancelledError:
            await self.shutdown()
            raise
        result = self._result(status)
        log.info("stack_result", status=result.status, failed=result.failed)
        return result

    def request_stop(self) -> None:
        """Ask every supervisor to stop; safe to call from a signal handler."""
        if self._stop_requested:
            return
        self._stop_requested = True
        if self._queue is not None:
            self._queue.put_nowait(_STOP)

    async def shutdown(self) -> StackResult:
        if self._pump_task is None or self._outcome is None:
            raise RuntimeError("orchestrator is not running")
        self.request_stop()
        await self._pump_task
        return self._result(self._outcome.result())

    def _result(self, status: StackStatus) -> StackResult:
        assert self.stack is not None
        return StackResult(
            status=status,
            failed=self.stack.failed_units(),
            units={name: sup.snapshot() for name, sup in self._supervisors.items()},
            events=list(self.events),
        )

    def _resolve(self, status: StackStatus) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(status)

    async def _pump(self) -> None:
        assert self._queue is not None
        failure: Exception | None = None
        try:
            while True:
                item = await self._queue.get()
                if item is _STOP:
                    break
                if isinstance(item, StateEvent):
                    self._observe(item)
        except Exception as exc:
            log.exception("orchestrator_failed")
            failure = exc
        finally:
            # Supervisors must never outlive the pump.
            await self._stop_all(failure)

    async def _stop_all(self, failure: Exception | None = None) -> None:
        assert self._queue is not None
        self._stopping = True
        log.info("stack_stopping")
        for supervisor in self._supervisors.values():
            supervisor.request_stop()
        waiters = [supervisor.wait() for supervisor in self._supervisors.values()]
        # Keep draining while supervisors wind down so sinks see every event.
        gather = asyncio.ensure_future(asyncio.gather(*waiters))
        while not gather.done() or not self._queue.empty():
            if self._queue.empty():
                await asyncio.wait({gather}, timeout=0.05)
                continue
            item = self._queue.get_nowait()
            if isinstance(item, StateEvent):
                self._observe(item)
        if failure is not None and self._outcome is not None and not self._outcome.done():
            self._outcome.set_exception(failure)
        self._resolve("CANCELLED")

    def _observe(self, event: StateEvent) -> None:
        assert self.stack is not None
        self.events.append(event)
        self.stack.apply(event)
        for sink in self.sinks:
            try:
                sink(event)
            except Exception:
                log.exception("event_sink_failed", unit=event.unit, to_state=event.to_state)
        if not self._stopping:
            self._schedule()
            self._evaluate()

    def _readiness(self, name: str) -> bool | str:
        """True when ``name`` may start, a dependency name when it never can."""
        assert self.graph is not None and self.stack is not None
        satisfied: set[str] = set()
        for dep in self.graph.dependencies_of(name):
            healthy = self.stack.status_of(dep) == "HEALTHY"
            terminal = self.stack.is_terminal(dep)
            if self.graph.required(name, dep):
                if healthy:
                    satisfied.add(dep)
                elif terminal:
                    return dep
            elif healthy or terminal:
                satisfied.add(dep)
        return self.graph.ready(name, satisfied)

    def _schedule(self) -> None:
        assert self.graph is not None
        if self._stopping:
            return
        for name in self.graph.order:
            if name in self._released:
                continue
            verdict = self._readiness(name)
            if verdict is True:
                self._released.add(name)
                log.debug("unit_released", unit=name)
                self._supervisors[name].release()
            elif isinstance(verdict, str):
                self._released.add(name)
                self._supervisors[name].abandon(f"dependency_failed: {verdict}")

    def _evaluate(self) -> None:
        assert self.stack is not None
        if self.stack.is_up():
            self._resolve("UP")
        elif self.stack.settled():
            self._resolve("FAILED")
