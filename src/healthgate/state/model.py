from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, cast

UnitStatus = Literal[
    "PENDING",
    "STARTING",
    "WAITING_HEALTHY",
    "HEALTHY",
    "DEGRADED",
    "FAILED",
    "STOPPED",
]
StackStatus = Literal["UP", "FAILED", "CANCELLED"]
UNIT_STATUS_VALUES: set[str] = {
    "PENDING",
    "STARTING",
    "WAITING_HEALTHY",
    "HEALTHY",
    "DEGRADED",
    "FAILED",
    "STOPPED",
}


def _as_str(value: object, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _as_optional_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _as_int(value: object, default: int = 0) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else default


def _as_bool(value: object, default: bool = False) -> bool:
    return value if isinstance(value, bool) else default


def _parse_unit_status(value: object) -> UnitStatus:
    status = _as_str(value, "PENDING")
    if status not in UNIT_STATUS_VALUES:
        status = "PENDING"
    return cast(UnitStatus, status)


@dataclass(frozen=True, slots=True)
class StateEvent:
    unit: str
    from_state: UnitStatus
    to_state: UnitStatus
    timestamp: str
    reason: str | None = None
    attempt: int = 0
    terminal: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "unit": self.unit,
            "from": self.from_state,
            "to": self.to_state,
            "timestamp": self.timestamp,
            "reason": self.reason,
            "attempt": self.attempt,
            "terminal": self.terminal,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> StateEvent:
        return cls(
            unit=_as_str(data.get("unit")),
            from_state=_parse_unit_status(data.get("from")),
            to_state=_parse_unit_status(data.get("to")),
            timestamp=_as_str(data.get("timestamp")),
            reason=_as_optional_str(data.get("reason")),
            attempt=_as_int(data.get("attempt")),
            terminal=_as_bool(data.get("terminal")),
        )


@dataclass(slots=True)
class UnitRuntimeState:
    name: str
    status: UnitStatus = "PENDING"
    attempts: int = 0
    restarts: int = 0
    consecutive_failures: int = 0
    consecutive_probe_errors: int = 0
    ever_healthy: bool = False
    terminal: bool = False
    reason: str | None = None
    last_probe: str | None = None
    last_probe_at: str | None = None
    last_latency_ms: float | None = None
    started_at: str | None = None
    ended_at: str | None = None
    handle: Any = field(default=None, repr=False)

    def snapshot(self) -> UnitRuntimeState:
        """Copy without the launch handle, safe to hand to other tasks."""
        return replace(self, handle=None)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "status": self.status,
            "attempts": self.attempts,
            "restarts": self.restarts,
            "consecutive_failures": self.consecutive_failures,
            "ever_healthy": self.ever_healthy,
            "terminal": self.terminal,
            "reason": self.reason,
            "last_probe": self.last_probe,
            "last_probe_at": self.last_probe_at,
            "last_latency_ms": self.last_latency_ms,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


@dataclass(slots=True)
class StackState:
    """Latest known state of every unit, assembled from events only."""

    order: list[str]
    latest: dict[str, StateEvent] = field(default_factory=dict)

    def apply(self, event: StateEvent) -> None:
        self.latest[event.unit] = event

    def status_of(self, name: str) -> UnitStatus:
        event = self.latest.get(name)
        return "PENDING" if event is None else event.to_state

    def is_terminal(self, name: str) -> bool:
        event = self.latest.get(name)
        if event is None:
            return False
        return event.terminal and event.to_state in {"FAILED", "STOPPED"}

    def healthy(self) -> set[str]:
        return {name for name in self.order if self.status_of(name) == "HEALTHY"}

    def terminal(self) -> set[str]:
        return {name for name in self.order if self.is_terminal(name)}

    def is_up(self) -> bool:
        return all(self.status_of(name) == "HEALTHY" for name in self.order)

    def settled(self) -> bool:
        """Every unit is healthy or will never change state again."""
        return all(
            self.status_of(name) == "HEALTHY" or self.is_terminal(name) for name in self.order
        )

    def failed_units(self) -> list[str]:
        return [
            name
            for name in self.order
            if self.status_of(name) == "FAILED" and self.is_terminal(name)
        ]


@dataclass(slots=True)
class StackResult:
    status: StackStatus
    failed: list[str]
    units: dict[str, UnitRuntimeState]
    events: list[StateEvent]

    @property
    def ok(self) -> bool:
        return self.status == "UP"

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "failed": self.failed,
            "units": {name: unit.to_dict() for name, unit in self.units.items()},
            "events": [event.to_dict() for event in self.events],
        }
