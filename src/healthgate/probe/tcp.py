from __future__ import annotations

import asyncio
import socket
import time
from contextlib import suppress

from healthgate.probe.result import ProbeResult, elapsed_ms


def parse_host_port(target: str) -> tuple[str, int]:
    host, sep, port = target.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"tcp target must be host:port, got {target!r}")
    value = int(port)
    if not 0 < value < 65536:
        raise ValueError(f"tcp port out of range: {value}")
    return host.strip("[]"), value


async def check_tcp(target: str, timeout_sec: float) -> ProbeResult:
    start = time.perf_counter()
    try:
        host, port = parse_host_port(target)
    except ValueError as exc:
        return ProbeResult("PROBE_ERROR", elapsed_ms(start), str(exc))
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout_sec)
    except TimeoutError:
        return ProbeResult("UNHEALTHY", elapsed_ms(start), "timeout")
    except socket.gaierror as exc:
        return ProbeResult("PROBE_ERROR", elapsed_ms(start), f"cannot resolve target: {exc}")
    except OSError as exc:
        return ProbeResult("UNHEALTHY", elapsed_ms(start), f"connect failed: {exc}")
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()
    return ProbeResult("HEALTHY", elapsed_ms(start), "connected")
