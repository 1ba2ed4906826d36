"""
Topological planner.

Orders resources so that each one comes after everything it depends on.
Resources with no relative ordering constraint keep their declaration order
(first declared first), so identical input always yields an identical plan.
"""

import heapq
from typing import Mapping, Sequence

from infraplan.errors import CycleError
from infraplan.graph import Graph
from infraplan.schemas import Resource


def topological_sort(ids: Sequence[str], dependencies: Mapping[str, Sequence[str]]) -> list[str]:
    """
    Stable topological sort (Kahn's algorithm, ties by position in ids).

    Dependencies that are not in ids are ignored.

    Args:
        ids: Node ids in declaration order
        dependencies: id -> ids it depends on

    Returns:
        ids ordered dependency-first

    Raises:
        CycleError: If the remaining nodes cannot be ordered
    """
    position = {node: i for i, node in enumerate(ids)}
    remaining = {
        node: {dep for dep in dependencies.get(node, ()) if dep in position and dep != node}
        for node in ids
    }
    dependents: dict[str, list[str]] = {node: [] for node in ids}
    for node, deps in remaining.items():
        for dep in deps:
            dependents[dep].append(node)

    ready = [position[node] for node, deps in remaining.items() if not deps]
    heapq.heapify(ready)

    ordered: list[str] = []
    while ready:
        node = ids[heapq.heappop(ready)]
        ordered.append(node)
        for dependent in dependents[node]:
            deps = remaining[dependent]
            deps.discard(node)
            if not deps:
                heapq.heappush(ready, position[dependent])

    if len(ordered) != len(ids):
        stuck = [node for node in ids if node not in set(ordered)]
        raise CycleError(stuck)
    return ordered


def order(graph: Graph) -> list[Resource]:
    """
    Creation order: every resource after all resources it depends on.

    Args:
        graph: Acyclic dependency graph

    Returns:
        Resources, dependency-first
    """
    ids = [r.logical_id for r in graph.resources]
    deps = {logical_id: graph.dependencies(logical_id) for logical_id in ids}
    return [graph.get(logical_id) for logical_id in topological_sort(ids, deps)]


def reverse_order(graph: Graph) -> list[Resource]:
    """Deletion order: the exact reverse of order()."""
    return list(reversed(order(graph)))
