from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

from healthgate.exec.timeout import wait_with_timeout
from healthgate.probe.result import ProbeResult, elapsed_ms


async def check_command(argv: Sequence[str], timeout_sec: float) -> ProbeResult:
    """Run a check command; exit code 0 means healthy."""
    start = time.perf_counter()
    if not argv:
        return ProbeResult("PROBE_ERROR", elapsed_ms(start), "empty check command")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (OSError, ValueError) as exc:
        return ProbeResult("PROBE_ERROR", elapsed_ms(start), f"cannot run check: {exc}")

    timed_out, exit_code = await wait_with_timeout(proc, timeout_sec)
    if timed_out:
        return ProbeResult("UNHEALTHY", elapsed_ms(start), "timeout")
    if exit_code == 0:
        return ProbeResult("HEALTHY", elapsed_ms(start), "exit 0")
    return ProbeResult("UNHEALTHY", elapsed_ms(start), f"exit {exit_code}")
