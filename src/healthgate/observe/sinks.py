from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import structlog

from healthgate.state.model import StateEvent

EventSink = Callable[[StateEvent], None]

_WARN_STATES = {"DEGRADED", "FAILED"}

log = structlog.get_logger("healthgate.events")


def log_sink(event: StateEvent) -> None:
    """Log each transition; failures and regressions at warning level."""
    emit = log.warning if event.to_state in _WARN_STATES else log.info
    emit(
        "unit_transition",
        unit=event.unit,
        from_state=event.from_state,
        to_state=event.to_state,
        reason=event.reason,
        attempt=event.attempt,
        terminal=event.terminal,
    )


class EventCollector:
    """Keeps every event in memory, in arrival order."""

    def __init__(self) -> None:
        self.events: list[StateEvent] = []

    def __call__(self, event: StateEvent) -> None:
        self.events.append(event)

    def transitions(self, unit: str) -> list[str]:
        return [event.to_state for event in self.events if event.unit == unit]


class JsonlSink:
    """Append events to a JSON-lines file, best effort.

    With ``fresh`` the file is truncated up front so it holds a single run.
    """

    def __init__(self, path: Path, *, fresh: bool = False) -> None:
        self.path = path
        if fresh:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text("", encoding="utf-8")
            except OSError as exc:
                log.warning("event_file_reset_failed", path=str(self.path), error=str(exc))

    def __call__(self, event: StateEvent) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        except OSError as exc:
            log.warning("event_file_write_failed", path=str(self.path), error=str(exc))


def read_events(path: Path) -> list[StateEvent]:
    events: list[StateEvent] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            data = json.loads(line)
            if isinstance(data, dict):
                events.append(StateEvent.from_dict(data))
    return events
