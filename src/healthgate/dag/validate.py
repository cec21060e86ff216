"""DAG validation helpers."""

from __future__ import annotations

from collections.abc import Iterator

from healthgate.util.errors import CycleDetected

_WHITE = 0
_GREY = 1
_BLACK = 2


def assert_acyclic(unit_names: list[str], dependencies: dict[str, list[str]]) -> list[str]:
    """
    Validate graph has no cycle using a three-color depth-first traversal.

    Returns a start order where every unit follows all of its dependencies.
    Roots are visited in declaration order so the result is deterministic.
    """
    color = dict.fromkeys(unit_names, _WHITE)
    order: list[str] = []

    for root in unit_names:
        if color[root] != _WHITE:
            continue
        color[root] = _GREY
        path = [root]
        stack: list[Iterator[str]] = [iter(dependencies.get(root, []))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                done = path.pop()
                color[done] = _BLACK
                order.append(done)
                continue
            if color[nxt] == _GREY:
                start = path.index(nxt)
                raise CycleDetected([*path[start:], nxt])
            if color[nxt] == _WHITE:
                color[nxt] = _GREY
                path.append(nxt)
                stack.append(iter(dependencies.get(nxt, [])))

    return order
