from __future__ import annotations

from pathlib import Path

from healthgate.state.model import StackResult
from healthgate.util.tail import tail_lines


def build_summary(
    result: StackResult, *, stack_name: str | None = None, log_dir: Path | None = None
) -> dict[str, object]:
    unit_rows: list[dict[str, object]] = []
    problem_rows: list[dict[str, object]] = []

    for name, unit in result.units.items():
        unit_rows.append(
            {
                "name": name,
                "status": unit.status,
                "attempts": unit.attempts,
                "restarts": unit.restarts,
                "ever_healthy": unit.ever_healthy,
                "last_probe": unit.last_probe,
                "last_latency_ms": unit.last_latency_ms,
            }
        )
        if name in result.failed:
            stderr_tail = tail_lines(log_dir / f"{name}.err.log", 20) if log_dir else []
            problem_rows.append(
                {"name": name, "reason": unit.reason, "stderr_tail": stderr_tail}
            )

    timeline = [
        {
            "timestamp": event.timestamp,
            "unit": event.unit,
            "transition": f"{event.from_state} -> {event.to_state}",
            "reason": event.reason,
        }
        for event in result.events
    ]
    return {
        "stack": {
            "name": stack_name,
            "status": result.status,
            "failed": list(result.failed),
            "units": len(result.units),
        },
        "units": unit_rows,
        "problems": problem_rows,
        "timeline": timeline,
    }
