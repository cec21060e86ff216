from __future__ import annotations

import pytest
from fakes import make_unit

from healthgate.dag.build import build_adjacency
from healthgate.dag.graph import DependencyGraph
from healthgate.dag.validate import assert_acyclic
from healthgate.util.errors import ConfigError, CycleDetected, UnknownDependency


def _observability_units():
    return [
        make_unit("app", ("prometheus", "grafana", "loki", "tempo")),
        make_unit("otel-collector", ("prometheus", "grafana", "loki", "tempo")),
        make_unit("grafana", ("prometheus",)),
        make_unit("prometheus"),
        make_unit("loki"),
        make_unit("tempo"),
    ]


def test_build_adjacency_includes_leaf_nodes() -> None:
    dependencies, dependents = build_adjacency(
        [make_unit("root"), make_unit("a", ("root",)), make_unit("b", ("root",))]
    )
    assert dependencies == {"root": [], "a": ["root"], "b": ["root"]}
    assert dependents["root"] == ["a", "b"]
    assert dependents["a"] == []


def test_order_places_every_unit_after_its_dependencies() -> None:
    units = _observability_units()
    graph = DependencyGraph.build(units)

    position = {name: idx for idx, name in enumerate(graph.order)}
    assert sorted(graph.order) == sorted(unit.name for unit in units)
    for unit in units:
        for dep in unit.dependency_names:
            assert position[dep] < position[unit.name]


def test_order_is_deterministic_for_independent_units() -> None:
    graph = DependencyGraph.build([make_unit("c"), make_unit("a"), make_unit("b")])
    assert graph.order == ("c", "a", "b")
    assert graph.roots() == ["c", "a", "b"]


def test_ready_and_dependents() -> None:
    graph = DependencyGraph.build(_observability_units())

    assert graph.ready("prometheus", set())
    assert not graph.ready("grafana", set())
    assert graph.ready("grafana", {"prometheus"})
    assert not graph.ready("otel-collector", {"prometheus", "grafana", "loki"})
    assert graph.dependents_of("prometheus") == {"grafana", "app", "otel-collector"}
    assert graph.dependents_of("app") == set()


def test_required_flag_is_tracked_per_edge() -> None:
    graph = DependencyGraph.build(
        [make_unit("a"), make_unit("b"), make_unit("c", ("a",), soft=("b",))]
    )
    assert graph.required("c", "a") is True
    assert graph.required("c", "b") is False


def test_cycle_is_reported_with_members_in_traversal_order() -> None:
    units = [make_unit("a", ("c",)), make_unit("b", ("a",)), make_unit("c", ("b",))]
    with pytest.raises(CycleDetected) as exc_info:
        DependencyGraph.build(units)
    assert exc_info.value.members == ["a", "c", "b", "a"]


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(CycleDetected) as exc_info:
        DependencyGraph.build([make_unit("solo", ("solo",))])
    assert exc_info.value.members == ["solo", "solo"]


def test_cycle_behind_acyclic_prefix_is_detected() -> None:
    units = [
        make_unit("root"),
        make_unit("x", ("root", "z")),
        make_unit("y", ("x",)),
        make_unit("z", ("y",)),
    ]
    with pytest.raises(CycleDetected) as exc_info:
        DependencyGraph.build(units)
    assert set(exc_info.value.members) == {"x", "y", "z"}


def test_unknown_dependency_is_rejected() -> None:
    with pytest.raises(UnknownDependency) as exc_info:
        DependencyGraph.build([make_unit("grafana", ("prometheus",))])
    assert exc_info.value.unit == "grafana"
    assert exc_info.value.missing == ["prometheus"]
    assert isinstance(exc_info.value, ConfigError)


def test_duplicate_names_are_rejected() -> None:
    with pytest.raises(ConfigError):
        DependencyGraph.build([make_unit("a"), make_unit("a")])


def test_assert_acyclic_on_diamond() -> None:
    dependencies = {"top": ["left", "right"], "left": ["base"], "right": ["base"], "base": []}
    order = assert_acyclic(["top", "left", "right", "base"], dependencies)
    assert order == ["base", "left", "right", "top"]
