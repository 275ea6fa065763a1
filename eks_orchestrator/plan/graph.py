"""Directed dependency graph with cycle detection and deterministic ordering."""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Optional, Set

from eks_orchestrator.errors import PlanConflict


class DependencyGraph:
    """Nodes are string ids; an edge ``a -> b`` means *a* depends on *b*."""

    def __init__(self) -> None:
        self._deps: Dict[str, Set[str]] = {}

    def add_node(self, node: str) -> None:
        self._deps.setdefault(node, set())

    def add_edge(self, node: str, depends_on: str) -> None:
        self.add_node(node)
        self.add_node(depends_on)
        self._deps[node].add(depends_on)

    def __contains__(self, node: object) -> bool:
        return node in self._deps

    def __len__(self) -> int:
        return len(self._deps)

    @property
    def nodes(self) -> List[str]:
        return sorted(self._deps)

    def dependencies(self, node: str) -> List[str]:
        return sorted(self._deps[node])

    def dependents(self, node: str) -> List[str]:
        return sorted(n for n, deps in self._deps.items() if node in deps)

    def transitive_dependents(self, node: str) -> Set[str]:
        """Every node that depends on *node* directly or through others."""
        seen: Set[str] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            for dependent in self.dependents(current):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen

    # -- cycles -----------------------------------------------------------

    def find_cycle(self) -> Optional[List[str]]:
        """Return one cycle as ``[a, b, ..., a]``, or None if the graph is acyclic."""
        white, grey, black = 0, 1, 2
        color = {n: white for n in self._deps}
        path: List[str] = []

        def visit(node: str) -> Optional[List[str]]:
            color[node] = grey
            path.append(node)
            for dep in sorted(self._deps[node]):
                if color[dep] == grey:
                    return path[path.index(dep):] + [dep]
                if color[dep] == white:
                    found = visit(dep)
                    if found:
                        return found
            path.pop()
            color[node] = black
            return None

        for node in sorted(self._deps):
            if color[node] == white:
                found = visit(node)
                if found:
                    return found
        return None

    def check_acyclic(self, what: str = "dependency graph") -> None:
        """Raise :class:`PlanConflict` naming the cycle if there is one."""
        cycle = self.find_cycle()
        if cycle:
            raise PlanConflict(
                f"Cycle in {what}: " + " -> ".join(cycle),
                cycle=cycle,
            )

    # -- ordering ---------------------------------------------------------

    def topological_order(self) -> List[str]:
        """Kahn's algorithm; among ready nodes the smallest id leaves first."""
        remaining = {n: len(deps) for n, deps in self._deps.items()}
        dependents: Dict[str, List[str]] = {n: [] for n in self._deps}
        for node, deps in self._deps.items():
            for dep in deps:
                dependents[dep].append(node)

        ready = [n for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != len(self._deps):
            self.check_acyclic()
        return order


def graph_from(edges: Dict[str, Iterable[str]]) -> DependencyGraph:
    """Build a graph from ``{node: [dependencies]}``."""
    graph = DependencyGraph()
    for node, deps in edges.items():
        graph.add_node(node)
        for dep in deps:
            graph.add_edge(node, dep)
    return graph
