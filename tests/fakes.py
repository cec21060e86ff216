"""In-memory launcher and probe doubles for supervisor/orchestrator tests."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable

from healthgate.config.schema import DependencySpec, HealthCheckSpec, RestartPolicy, UnitSpec
from healthgate.exec.launcher import UnitHandle
from healthgate.probe.result import ProbeOutcome, ProbeResult
from healthgate.util.errors import LaunchError

# (launch attempt, probe number within that attempt) -> outcome
Script = Callable[[int, int], ProbeOutcome]


def make_unit(
    name: str,
    hard: tuple[str, ...] = (),
    *,
    soft: tuple[str, ...] = (),
    failures: int = 3,
    interval: float = 0.01,
    restart: RestartPolicy | None = None,
) -> UnitSpec:
    deps = tuple(DependencySpec(d) for d in hard) + tuple(
        DependencySpec(d, required=False) for d in soft
    )
    return UnitSpec(
        name=name,
        dependencies=deps,
        health_check=HealthCheckSpec(
            kind="process", interval_sec=interval, timeout_sec=1.0,
            max_consecutive_failures=failures,
        ),
        restart=restart or RestartPolicy(),
    )


def always(outcome: ProbeOutcome) -> Script:
    return lambda attempt, n: outcome


def healthy_from_attempt(first_good: int) -> Script:
    return lambda attempt, n: "HEALTHY" if attempt >= first_good else "UNHEALTHY"


def sequence(*outcomes: ProbeOutcome) -> Script:
    """Outcomes for the first launch in order; the last one repeats."""
    return lambda attempt, n: outcomes[min(n, len(outcomes)) - 1]


class FakeLauncher:
    def __init__(self, fail_launches: dict[str, int] | None = None) -> None:
        self.fail_launches = dict(fail_launches or {})
        self.started: list[str] = []
        self.stopped: list[str] = []

    async def start(self, unit: UnitSpec) -> UnitHandle:
        await asyncio.sleep(0)
        self.started.append(unit.name)
        if self.fail_launches.get(unit.name, 0) > 0:
            self.fail_launches[unit.name] -= 1
            raise LaunchError(f"cannot start {unit.name}")
        return UnitHandle(unit.name)

    async def stop(self, handle: UnitHandle) -> None:
        self.stopped.append(handle.unit)


class ScriptedProbe:
    """Answers probes from per-unit scripts; unscripted units are healthy.

    A unit listed in ``gates`` answers UNHEALTHY (without counting as a
    scripted probe) until its gate event is set.
    """

    def __init__(
        self,
        scripts: dict[str, Script] | None = None,
        gates: dict[str, asyncio.Event] | None = None,
    ) -> None:
        self.scripts = scripts or {}
        self.gates = gates or {}
        self.calls: Counter[str] = Counter()
        self._launches: Counter[str] = Counter()
        self._handles: dict[int, tuple[UnitHandle, int, int]] = {}

    async def __call__(self, unit: UnitSpec, handle: UnitHandle | None) -> ProbeResult:
        await asyncio.sleep(0)
        self.calls[unit.name] += 1
        gate = self.gates.get(unit.name)
        if gate is not None and not gate.is_set():
            return ProbeResult("UNHEALTHY", 0.1, "gated")
        assert handle is not None
        key = id(handle)
        if key not in self._handles:
            self._launches[unit.name] += 1
            self._handles[key] = (handle, self._launches[unit.name], 0)
        kept, attempt, probes = self._handles[key]
        probes += 1
        self._handles[key] = (kept, attempt, probes)
        script = self.scripts.get(unit.name, always("HEALTHY"))
        return ProbeResult(script(attempt, probes), 0.1, f"attempt {attempt} probe {probes}")
