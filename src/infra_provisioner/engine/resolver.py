"""Cycle detection and leveled topological ordering."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import CyclicDependencyError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from infra_provisioner.engine.graph import ResourceGraph

_VISITING = 1
_DONE = 2


class DependencyResolver:
    """Orders nodes so every producer comes before its consumers.

    *dependencies* maps a node to the nodes it depends on.  Dependencies on
    nodes outside *nodes* are ignored.  Node order in *nodes* is the
    declaration order used to break ties.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
    ) -> None:
        self._nodes = list(dict.fromkeys(nodes))
        known = set(self._nodes)
        self._index = {node: i for i, node in enumerate(self._nodes)}
        # node -> filtered, de-duplicated deps within graph
        self._deps: dict[str, list[str]] = {
            node: [d for d in dict.fromkeys(dependencies.get(node, ())) if d in known]
            for node in self._nodes
        }

    def find_cycle(self) -> list[str] | None:
        """Depth-first search with recursion-stack marking.

        Returns the ids of the first cycle found, in cycle order (each node
        depends on the next, the last on the first), or None.
        """
        marks: dict[str, int] = {}

        for root in self._nodes:
            if root in marks:
                continue
            marks[root] = _VISITING
            path = [root]
            stack: list[tuple[str, Iterator[str]]] = [(root, iter(self._deps[root]))]

            while stack:
                node, pending = stack[-1]
                for dep in pending:
                    mark = marks.get(dep)
                    if mark == _VISITING:
                        return path[path.index(dep) :]
                    if mark is None:
                        marks[dep] = _VISITING
                        path.append(dep)
                        stack.append((dep, iter(self._deps[dep])))
                        break
                else:
                    marks[node] = _DONE
                    path.pop()
                    stack.pop()

        return None

    def levels(self) -> list[list[str]]:
        """Group nodes into levels; level k depends only on levels < k.

        Raises:
            CyclicDependencyError: If the dependencies contain a cycle.
        """
        cycle = self.find_cycle()
        if cycle is not None:
            raise CyclicDependencyError(cycle)

        remaining = {node: len(deps) for node, deps in self._deps.items()}
        dependents: dict[str, list[str]] = {node: [] for node in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                dependents[dep].append(node)

        levels: list[list[str]] = []
        current = [node for node in self._nodes if remaining[node] == 0]
        while current:
            levels.append(current)
            ready: list[str] = []
            for node in current:
                for child in dependents[node]:
                    remaining[child] -= 1
                    if remaining[child] == 0:
                        ready.append(child)
            current = sorted(ready, key=self._index.__getitem__)

        return levels

    def level_of(self) -> dict[str, int]:
        """Map each node to its level index."""
        return {node: i for i, level in enumerate(self.levels()) for node in level}

    def order(self) -> list[str]:
        """Deterministic topological order (levels flattened)."""
        return [node for level in self.levels() for node in level]


def resolve_graph(graph: ResourceGraph) -> list[list[str]]:
    """Leveled execution order for a built resource graph."""
    return DependencyResolver(graph.ids(), graph.dependency_map()).levels()
