"""Application-level error types."""

from __future__ import annotations


class HealthgateError(Exception):
    """Base error for healthgate."""


class ConfigError(HealthgateError):
    """Raised when a stack definition is malformed or cannot be loaded."""


class UnknownDependency(ConfigError):
    """Raised when a unit depends on a name missing from the stack."""

    def __init__(self, unit: str, missing: list[str]) -> None:
        self.unit = unit
        self.missing = missing
        super().__init__(f"unit '{unit}' has unknown dependencies: {missing}")


class CycleDetected(ConfigError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, members: list[str]) -> None:
        self.members = members
        super().__init__(f"dependency cycle detected: {' -> '.join(members)}")


class LaunchError(HealthgateError):
    """Raised by a launcher when a unit cannot be started."""
