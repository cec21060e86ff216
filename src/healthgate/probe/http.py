from __future__ import annotations

import asyncio
import socket
import time

import httpx

from healthgate.probe.result import ProbeResult, caused_by, elapsed_ms


async def check_http(url: str, timeout_sec: float) -> ProbeResult:
    """Call a readiness endpoint once.

    2xx and 3xx answers are healthy. Timeouts, refused connections and other
    status codes are unhealthy. Malformed URLs and names that do not resolve
    are probe errors.
    """
    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(
            timeout=timeout_sec, follow_redirects=False, trust_env=False
        ) as client:
            resp = await asyncio.wait_for(client.get(url), timeout=timeout_sec)
    except (TimeoutError, httpx.TimeoutException):
        return ProbeResult("UNHEALTHY", elapsed_ms(start), "timeout")
    except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
        return ProbeResult("PROBE_ERROR", elapsed_ms(start), f"invalid target: {exc}")
    except httpx.ConnectError as exc:
        if caused_by(exc, socket.gaierror):
            return ProbeResult("PROBE_ERROR", elapsed_ms(start), f"cannot resolve target: {exc}")
        return ProbeResult("UNHEALTHY", elapsed_ms(start), "no response")
    except httpx.HTTPError as exc:
        return ProbeResult("UNHEALTHY", elapsed_ms(start), f"{type(exc).__name__}: {exc}")

    latency = elapsed_ms(start)
    if 200 <= resp.status_code < 400:
        return ProbeResult("HEALTHY", latency, f"HTTP {resp.status_code}")
    return ProbeResult("UNHEALTHY", latency, f"HTTP {resp.status_code}")
