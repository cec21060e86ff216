from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from healthgate.config.schema import HealthCheckSpec, UnitSpec
from healthgate.probe.command import check_command
from healthgate.probe.http import check_http
from healthgate.probe.result import ProbeResult, elapsed_ms
from healthgate.probe.tcp import check_tcp

if TYPE_CHECKING:
    from healthgate.exec.launcher import UnitHandle

ProbeFn = Callable[["UnitSpec", "UnitHandle | None"], Awaitable[ProbeResult]]


def _check_process(handle: UnitHandle | None) -> ProbeResult:
    start = time.perf_counter()
    if handle is None or handle.alive():
        return ProbeResult("HEALTHY", elapsed_ms(start), "running")
    return ProbeResult("UNHEALTHY", elapsed_ms(start), f"exited with {handle.returncode}")


async def check(
    spec: HealthCheckSpec,
    timeout_sec: float | None = None,
    handle: UnitHandle | None = None,
) -> ProbeResult:
    """Perform exactly one probe attempt described by ``spec``."""
    timeout = spec.timeout_sec if timeout_sec is None else timeout_sec
    target = spec.target
    if spec.kind == "process":
        return _check_process(handle)
    if spec.kind == "http" and isinstance(target, str):
        return await check_http(target, timeout)
    if spec.kind == "tcp" and isinstance(target, str):
        return await check_tcp(target, timeout)
    if spec.kind == "cmd" and isinstance(target, tuple):
        return await check_command(target, timeout)
    return ProbeResult("PROBE_ERROR", 0.0, f"unusable {spec.kind} probe target: {target!r}")


async def check_unit(unit: UnitSpec, handle: UnitHandle | None) -> ProbeResult:
    return await check(unit.health_check, handle=handle)
