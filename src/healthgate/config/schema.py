from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ProbeKind = Literal["http", "tcp", "cmd", "process"]
RestartMode = Literal["never", "on-failure", "always"]

DEFAULT_INTERVAL_SEC = 10.0
DEFAULT_TIMEOUT_SEC = 5.0
DEFAULT_MAX_FAILURES = 3


@dataclass(frozen=True, slots=True)
class DependencySpec:
    name: str
    required: bool = True


@dataclass(frozen=True, slots=True)
class HealthCheckSpec:
    kind: ProbeKind = "process"
    target: str | tuple[str, ...] | None = None
    interval_sec: float = DEFAULT_INTERVAL_SEC
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    max_consecutive_failures: int = DEFAULT_MAX_FAILURES


@dataclass(frozen=True, slots=True)
class RestartPolicy:
    mode: RestartMode = "never"
    max_restarts: int = 0
    backoff_sec: tuple[float, ...] = ()
    backoff_max_sec: float = 60.0


@dataclass(frozen=True, slots=True)
class UnitSpec:
    name: str
    command: tuple[str, ...] | None = None
    dependencies: tuple[DependencySpec, ...] = ()
    health_check: HealthCheckSpec = field(default_factory=HealthCheckSpec)
    restart: RestartPolicy = field(default_factory=RestartPolicy)
    cwd: str | None = None
    env: tuple[tuple[str, str], ...] = ()
    config: Any = field(default=None, compare=False, hash=False)

    @property
    def dependency_names(self) -> list[str]:
        return [dep.name for dep in self.dependencies]

    @property
    def external(self) -> bool:
        return self.command is None


@dataclass(frozen=True, slots=True)
class StackSpec:
    name: str | None
    units: tuple[UnitSpec, ...]
