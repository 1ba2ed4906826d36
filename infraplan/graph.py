"""
Dependency graph builder.

Scans each resource's property bag for References and adds an edge
referencer -> referenced, plus an edge for every explicit depends_on entry.
The resulting graph must be acyclic; cycles are detected with a depth-first
traversal that tracks the recursion stack.
"""

import logging
from typing import Iterable, Iterator, Optional

from infraplan.errors import CycleError, DuplicateIdError, UnknownReferenceError
from infraplan.schemas import Resource

logger = logging.getLogger(__name__)

# DFS node colors
_WHITE, _GRAY, _BLACK = 0, 1, 2


class Graph:
    """
    Directed acyclic graph of resources.

    Nodes are kept in declaration order. Edges point from a resource to
    the resources it depends on.
    """

    def __init__(self, resources: list[Resource], edges: dict[str, list[str]]):
        self._resources = {r.logical_id: r for r in resources}
        self._order = [r.logical_id for r in resources]
        self._edges = edges

    @property
    def resources(self) -> list[Resource]:
        """Resources in declaration order."""
        return [self._resources[i] for i in self._order]

    def get(self, logical_id: str) -> Optional[Resource]:
        return self._resources.get(logical_id)

    def dependencies(self, logical_id: str) -> list[str]:
        """Direct dependencies of a resource."""
        return list(self._edges.get(logical_id, []))

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._resources

    def __repr__(self) -> str:
        edge_count = sum(len(v) for v in self._edges.values())
        return f"Graph(nodes={len(self._order)}, edges={edge_count})"


def _find_cycle(order: list[str], edges: dict[str, list[str]]) -> Optional[list[str]]:
    """
    Depth-first search for a cycle.

    Returns:
        The logical ids forming the first cycle found (in traversal order),
        or None if the graph is acyclic.
    """
    color = {node: _WHITE for node in order}
    stack: list[str] = []

    def visit(node: str) -> Optional[list[str]]:
        color[node] = _GRAY
        stack.append(node)
        for dep in edges.get(node, []):
            if color[dep] == _GRAY:
                return stack[stack.index(dep):]
            if color[dep] == _WHITE:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        color[node] = _BLACK
        return None

    for node in order:
        if color[node] == _WHITE:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def build(resources: Iterable[Resource]) -> Graph:
    """
    Build the dependency graph for a set of resources.

    Args:
        resources: Resources in declaration order (a ResourceSet or list)

    Returns:
        Acyclic Graph

    Raises:
        DuplicateIdError: If two resources share a logical id
        UnknownReferenceError: If a dependency or declared output targets
                               an id absent from the set
        CycleError: If the dependencies form a cycle
    """
    resource_list = list(resources)
    ids: set[str] = set()
    for resource in resource_list:
        if resource.logical_id in ids:
            raise DuplicateIdError(resource.logical_id)
        ids.add(resource.logical_id)

    edges: dict[str, list[str]] = {}
    for resource in resource_list:
        deps = resource.dependency_ids()
        for dep in deps:
            if dep not in ids:
                raise UnknownReferenceError(resource.logical_id, dep)
        edges[resource.logical_id] = deps

    for name, ref in getattr(resources, "outputs", {}).items():
        if ref.logical_id not in ids:
            raise UnknownReferenceError(name, ref.logical_id, owner="Output")

    order = [r.logical_id for r in resource_list]
    cycle = _find_cycle(order, edges)
    if cycle:
        raise CycleError(cycle)

    graph = Graph(resource_list, edges)
    logger.debug(f"Built {graph!r}")
    return graph
