from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Literal

ProbeOutcome = Literal["HEALTHY", "UNHEALTHY", "PROBE_ERROR"]

# Consecutive probe errors tolerated before one is counted as unhealthy.
PROBE_ERROR_CAP = 3


@dataclass(frozen=True, slots=True)
class ProbeResult:
    outcome: ProbeOutcome
    latency_ms: float
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.outcome == "HEALTHY"


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


def caused_by(exc: BaseException, kind: type[BaseException]) -> bool:
    """Walk the exception chain looking for ``kind``."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, kind):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False
