from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass

from healthgate.config.schema import UnitSpec
from healthgate.dag.build import build_adjacency
from healthgate.dag.validate import assert_acyclic
from healthgate.util.errors import ConfigError, UnknownDependency


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """Validated, read-only view of unit dependencies."""

    order: tuple[str, ...]
    _dependencies: dict[str, tuple[str, ...]]
    _dependents: dict[str, tuple[str, ...]]
    _required: dict[tuple[str, str], bool]

    @classmethod
    def build(cls, units: Iterable[UnitSpec]) -> DependencyGraph:
        unit_list = list(units)
        names = [unit.name for unit in unit_list]
        if len(set(names)) != len(names):
            raise ConfigError("unit names must be unique")

        known = set(names)
        for unit in unit_list:
            missing = [dep for dep in unit.dependency_names if dep not in known]
            if missing:
                raise UnknownDependency(unit.name, missing)

        dependencies, dependents = build_adjacency(unit_list)
        order = assert_acyclic(names, dependencies)
        required = {
            (unit.name, dep.name): dep.required for unit in unit_list for dep in unit.dependencies
        }
        return cls(
            order=tuple(order),
            _dependencies={name: tuple(deps) for name, deps in dependencies.items()},
            _dependents={name: tuple(deps) for name, deps in dependents.items()},
            _required=required,
        )

    def __contains__(self, name: object) -> bool:
        return name in self._dependencies

    def __len__(self) -> int:
        return len(self.order)

    def dependencies_of(self, name: str) -> tuple[str, ...]:
        return self._dependencies[name]

    def dependents_of(self, name: str) -> set[str]:
        return set(self._dependents.get(name, ()))

    def required(self, name: str, dependency: str) -> bool:
        return self._required[(name, dependency)]

    def roots(self) -> list[str]:
        return [name for name in self.order if not self._dependencies[name]]

    def ready(self, name: str, completed: Collection[str]) -> bool:
        """True iff every dependency of ``name`` is in ``completed``."""
        return all(dep in completed for dep in self._dependencies[name])
