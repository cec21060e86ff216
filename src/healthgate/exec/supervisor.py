from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress

import structlog

from healthgate.config.schema import UnitSpec
from healthgate.exec.launcher import Launcher, UnitHandle
from healthgate.exec.retry import backoff_for_attempt, may_restart
from healthgate.probe.check import ProbeFn, check_unit
from healthgate.probe.result import PROBE_ERROR_CAP, ProbeResult
from healthgate.state.model import StateEvent, UnitRuntimeState, UnitStatus
from healthgate.util.errors import LaunchError
from healthgate.util.time import now_iso

log = structlog.get_logger(__name__)

Publish = Callable[[StateEvent], None]


class UnitSupervisor:
    """Owns the lifecycle of one unit.

    The orchestrator decides when a unit may leave PENDING by calling
    :meth:`release`. From then on a single task launches the unit, probes it
    on its interval, applies the restart policy and publishes every state
    change. ``state`` is only written from that task, or synchronously by
    :meth:`abandon` and :meth:`request_stop` while no task exists yet.
    """

    def __init__(
        self,
        unit: UnitSpec,
        launcher: Launcher,
        *,
        publish: Publish,
        probe: ProbeFn = check_unit,
    ) -> None:
        self.unit = unit
        self.launcher = launcher
        self.probe = probe
        self._publish = publish
        self.state = UnitRuntimeState(unit.name)
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def released(self) -> bool:
        return self._task is not None

    def snapshot(self) -> UnitRuntimeState:
        return self.state.snapshot()

    def release(self) -> None:
        if self._task is not None or self.state.terminal:
            return
        self._task = asyncio.create_task(self._run(), name=f"supervisor:{self.name}")

    def abandon(self, reason: str) -> None:
        """Fail a unit that was never released and never will be."""
        if self._task is not None or self.state.terminal:
            return
        self._transition("FAILED", reason, terminal=True)

    def request_stop(self) -> None:
        self._stop.set()
        if self._task is None and not self.state.terminal:
            self._transition("STOPPED", "cancelled", terminal=True)

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def _transition(self, to_state: UnitStatus, reason: str | None, *, terminal: bool = False) -> None:
        event = StateEvent(
            unit=self.name,
            from_state=self.state.status,
            to_state=to_state,
            timestamp=now_iso(),
            reason=reason,
            attempt=self.state.attempts,
            terminal=terminal,
        )
        self.state.status = to_state
        self.state.reason = reason
        self.state.terminal = terminal
        if terminal:
            self.state.ended_at = event.timestamp
        self._publish(event)

    async def _sleep_or_stop(self, delay: float) -> bool:
        """Wait ``delay`` seconds; True if a stop arrived meanwhile."""
        if self._stop.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, delay))
        except TimeoutError:
            return False
        return True

    async def _release_handle(self) -> None:
        handle = self.state.handle
        self.state.handle = None
        if handle is None:
            return
        try:
            await self.launcher.stop(handle)
        except (OSError, RuntimeError) as exc:
            log.warning("unit_stop_failed", unit=self.name, error=str(exc))

    async def _run(self) -> None:
        try:
            await self._lifecycle()
        except asyncio.CancelledError:
            with suppress(Exception):
                await self._release_handle()
            if not self.state.terminal:
                self._transition("STOPPED", "task_cancelled", terminal=True)
            raise
        except Exception as exc:
            log.exception("supervisor_crashed", unit=self.name)
            with suppress(Exception):
                await self._release_handle()
            self._transition(
                "FAILED", f"supervisor_exception: {type(exc).__name__}: {exc}", terminal=True
            )

    async def _lifecycle(self) -> None:
        policy = self.unit.restart
        while True:
            if self._stop.is_set():
                self._transition("STOPPED", "stop_requested", terminal=True)
                return

            self.state.attempts += 1
            self.state.consecutive_failures = 0
            self.state.consecutive_probe_errors = 0
            self._transition("STARTING", "released" if self.state.attempts == 1 else "restart")
            failure = await self._launch_and_watch()
            await self._release_handle()

            if failure is None:
                self._transition("STOPPED", "stop_requested", terminal=True)
                return

            reason, exit_code = failure
            if not may_restart(policy, self.state.restarts, exit_code=exit_code):
                log.warning("unit_failed", unit=self.name, reason=reason, attempts=self.state.attempts)
                self._transition("FAILED", reason, terminal=True)
                return

            self._transition("FAILED", reason)
            delay = backoff_for_attempt(self.state.restarts, policy)
            self.state.restarts += 1
            self._transition("PENDING", f"restart {self.state.restarts}/{policy.max_restarts} in {delay}s")
            if await self._sleep_or_stop(delay):
                self._transition("STOPPED", "stop_requested", terminal=True)
                return

    async def _launch_and_watch(self) -> tuple[str, int | None] | None:
        """Run one launch attempt.

        Returns None when a stop was requested, otherwise the failure reason
        and the process exit code if the process exited by itself.
        """
        try:
            handle = await self.launcher.start(self.unit)
        except LaunchError as exc:
            return f"launch_failed: {exc}", None
        self.state.handle = handle
        self.state.started_at = handle.started_at
        if self._stop.is_set():
            return None

        self._transition("WAITING_HEALTHY", "launched")
        check = self.unit.health_check
        while True:
            if await self._sleep_or_stop(check.interval_sec):
                return None
            if not handle.alive():
                return f"process_exited: {handle.returncode}", handle.returncode

            result = await self.probe(self.unit, handle)
            if self._stop.is_set():
                return None
            failure = self._record_probe(result, handle)
            if failure is not None:
                return failure, None

    def _record_probe(self, result: ProbeResult, handle: UnitHandle) -> str | None:
        state = self.state
        state.last_probe = f"{result.outcome}: {result.detail}" if result.detail else result.outcome
        state.last_probe_at = now_iso()
        state.last_latency_ms = result.latency_ms
        log.debug(
            "probe_result",
            unit=self.name,
            outcome=result.outcome,
            latency_ms=result.latency_ms,
            detail=result.detail,
            pid=handle.pid,
        )

        if result.outcome == "PROBE_ERROR":
            state.consecutive_probe_errors += 1
            if state.consecutive_probe_errors < PROBE_ERROR_CAP:
                log.warning("probe_error", unit=self.name, detail=result.detail)
                return None
            state.consecutive_probe_errors = 0
            healthy = False
        else:
            state.consecutive_probe_errors = 0
            healthy = result.healthy

        if healthy:
            state.consecutive_failures = 0
            if state.status != "HEALTHY":
                state.ever_healthy = True
                # Only a unit that came up earns its restart budget back.
                state.restarts = 0
                self._transition("HEALTHY", "probe_ok")
            return None

        state.consecutive_failures += 1
        if state.status == "HEALTHY":
            self._transition("DEGRADED", result.detail or "probe_failed")
        if state.consecutive_failures < self.unit.health_check.max_consecutive_failures:
            return None
        prefix = "unhealthy" if state.status == "DEGRADED" else "never_healthy"
        return f"{prefix}: {state.consecutive_failures} consecutive failed probes ({result.detail})"
