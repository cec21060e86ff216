"""Build graph structures from unit specs."""

from __future__ import annotations

from collections.abc import Iterable

from healthgate.config.schema import UnitSpec


def build_adjacency(
    units: Iterable[UnitSpec],
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Return (dependencies, dependents) adjacency keyed by unit name."""
    dependencies: dict[str, list[str]] = {}
    dependents: dict[str, list[str]] = {}

    for unit in units:
        dependencies[unit.name] = unit.dependency_names
        dependents.setdefault(unit.name, [])
        for dep in unit.dependency_names:
            dependents.setdefault(dep, []).append(unit.name)

    return dependencies, dependents
