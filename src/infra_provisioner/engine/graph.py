"""Resource graph construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from infra_provisioner.core.provider import ProviderContext
from infra_provisioner.engine.errors import (
    CyclicDependencyError,
    DuplicateNodeError,
    UnknownReferenceError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from infra_provisioner.resources.base import ResourceNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyEdge:
    """``producer`` must be applied before ``consumer``."""

    producer: str
    consumer: str


class ResourceGraph:
    """Declared nodes plus the dependency edges derived from them."""

    def __init__(self, nodes: Iterable[ResourceNode], edges: Iterable[DependencyEdge]) -> None:
        self._nodes: dict[str, ResourceNode] = {n.id: n for n in nodes}
        self._edges = list(edges)
        self._producers: dict[str, list[str]] = {node_id: [] for node_id in self._nodes}
        self._consumers: dict[str, list[str]] = {node_id: [] for node_id in self._nodes}
        for edge in self._edges:
            self._producers[edge.consumer].append(edge.producer)
            self._consumers[edge.producer].append(edge.consumer)

    @property
    def nodes(self) -> list[ResourceNode]:
        """Nodes in declaration order."""
        return list(self._nodes.values())

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._edges)

    def ids(self) -> list[str]:
        return list(self._nodes)

    def get(self, node_id: str) -> ResourceNode:
        return self._nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def producers(self, node_id: str) -> list[str]:
        return list(self._producers[node_id])

    def consumers(self, node_id: str) -> list[str]:
        return list(self._consumers[node_id])

    def dependents(self, node_id: str) -> set[str]:
        """Every node transitively depending on *node_id*."""
        seen: set[str] = set()
        pending = list(self._consumers.get(node_id, []))
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._consumers[current])
        return seen

    def dependency_map(self) -> dict[str, list[str]]:
        """node id -> producer ids."""
        return {node_id: list(deps) for node_id, deps in self._producers.items()}


class GraphBuilder:
    """Turns node declarations into a :class:`ResourceGraph`.

    Building has no side effects: input nodes are copied, never mutated.
    """

    def __init__(self, context: ProviderContext | None = None) -> None:
        self._context = context or ProviderContext()

    @property
    def context(self) -> ProviderContext:
        return self._context

    def build(self, nodes: Iterable[ResourceNode]) -> ResourceGraph:
        declared: dict[str, ResourceNode] = {}
        for node in nodes:
            if node.id in declared:
                raise DuplicateNodeError(node.id)
            declared[node.id] = self._prepare(node)

        edges: list[DependencyEdge] = []
        for node in declared.values():
            for dep in node.dependency_ids():
                if dep == node.id:
                    raise CyclicDependencyError([node.id])
                if dep not in declared:
                    raise UnknownReferenceError(node.id, dep)
                edges.append(DependencyEdge(producer=dep, consumer=node.id))

        logger.debug("Built graph: %d nodes, %d edges", len(declared), len(edges))
        return ResourceGraph(declared.values(), edges)

    def _prepare(self, node: ResourceNode) -> ResourceNode:
        copy = node.model_copy(deep=True)
        tags = copy.config.get("tags")
        if self._context.default_tags and (tags is None or isinstance(tags, dict)):
            copy.config["tags"] = self._context.merge_tags(tags)
        return copy
