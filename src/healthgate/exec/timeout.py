from __future__ import annotations

import asyncio
from contextlib import suppress


async def terminate_process(proc: asyncio.subprocess.Process, grace_sec: float = 1.0) -> int:
    """Terminate, then kill once ``grace_sec`` passes without an exit."""
    if proc.returncode is not None:
        return proc.returncode
    with suppress(ProcessLookupError):
        proc.terminate()
    try:
        return await asyncio.wait_for(proc.wait(), timeout=grace_sec)
    except TimeoutError:
        with suppress(ProcessLookupError):
            proc.kill()
        return await proc.wait()


async def wait_with_timeout(
    proc: asyncio.subprocess.Process, timeout_sec: float | None
) -> tuple[bool, int | None]:
    if timeout_sec is None:
        return False, await proc.wait()
    try:
        code = await asyncio.wait_for(proc.wait(), timeout=timeout_sec)
        return False, code
    except TimeoutError:
        await terminate_process(proc)
        return True, None
