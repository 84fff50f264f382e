"""Plan/diff engine: declared graph vs. recorded state."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any

from infra_provisioner import __version__
from infra_provisioner.core.state import compute_config_hash, compute_state_digest
from infra_provisioner.engine.handlers import ChangeClass
from infra_provisioner.engine.resolver import DependencyResolver
from infra_provisioner.engine.types import Action, Plan, PlanMetadata, PlanStep
from infra_provisioner.resources.references import resolve_references

if TYPE_CHECKING:
    from infra_provisioner.core.state import State, StateRecord
    from infra_provisioner.engine.graph import ResourceGraph
    from infra_provisioner.engine.registry import ResourceTypeRegistry
    from infra_provisioner.resources.base import ResourceNode

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_config_digest(graph: ResourceGraph) -> str:
    items = [
        n.model_dump(mode="json", include={"id", "type", "config", "depends_on"})
        for n in graph.nodes
    ]
    items.sort(key=lambda x: x["id"])
    return hashlib.sha256(_canonical_json(items).encode("utf-8")).hexdigest()


def config_diff(prior: dict[str, Any], planned: dict[str, Any]) -> dict[str, Any]:
    """Top-level keys whose value differs, as ``{"from": ..., "to": ...}``."""
    return {
        k: {"from": prior.get(k), "to": planned.get(k)}
        for k in [*planned, *(k for k in prior if k not in planned)]
        if prior.get(k) != planned.get(k)
    }


class Planner:
    """Classifies every node as create/update/destroy/no-op and levels the steps.

    Planning is a pure function of the graph and a state snapshot.
    """

    def __init__(self, registry: ResourceTypeRegistry) -> None:
        self._registry = registry

    def plan(self, graph: ResourceGraph, state: State, *, destroy: bool = False) -> Plan:
        logger.info("Planning %d nodes (destroy=%s)", len(graph), destroy)

        steps: list[PlanStep] = []
        if destroy:
            removed = list(state.records)
        else:
            steps = self._plan_declared(graph, state)
            removed = [node_id for node_id in state.records if node_id not in graph]

        barrier = max((s.level for s in steps), default=-1) + 1
        steps.extend(self._plan_destroys(state, removed, barrier))

        metadata = PlanMetadata(
            destroy=destroy,
            state_lineage=state.lineage,
            state_serial=state.serial,
            state_digest=compute_state_digest(state),
            config_digest=compute_config_digest(graph),
            engine_version=__version__,
        )
        return Plan(metadata=metadata, steps=steps)

    def _plan_declared(self, graph: ResourceGraph, state: State) -> list[PlanStep]:
        for node in graph.nodes:
            self._registry.get(node.type)  # fail early if unknown

        order = DependencyResolver(graph.ids(), graph.dependency_map()).order()

        # Producers being (re)created have no known outputs until applied.
        known: dict[str, dict[str, Any] | None] = dict(state.outputs_by_node())
        by_id: dict[str, PlanStep] = {}
        for node_id in order:
            step = self._classify(graph.get(node_id), state.records.get(node_id), known)
            step.dependencies = graph.producers(node_id)
            if step.action == Action.CREATE:
                known[node_id] = None
            by_id[node_id] = step

        # A no-op producer at level 0 has nothing pending upstream, so its
        # recorded outputs are final and it does not constrain its consumers.
        # A no-op above level 0 may still be promoted at apply time.
        for node_id in order:
            step = by_id[node_id]
            step.level = max(
                (
                    by_id[p].level + 1
                    for p in step.dependencies
                    if by_id[p].action != Action.NOOP or by_id[p].level > 0
                ),
                default=0,
            )
        index = {node_id: i for i, node_id in enumerate(graph.ids())}

        return sorted(by_id.values(), key=lambda s: (s.level, index[s.node_id]))

    def _classify(
        self,
        node: ResourceNode,
        record: StateRecord | None,
        known: dict[str, dict[str, Any] | None],
    ) -> PlanStep:
        planned, complete = resolve_references(node.config, known)

        if record is None:
            logger.debug("Classified %s as create", node.id)
            return PlanStep(
                node_id=node.id,
                resource_type=node.type,
                action=Action.CREATE,
                level=0,
                node=node.model_copy(deep=True),
                planned=planned,
            )

        prior = dict(record.config)
        if complete and compute_config_hash(node.type, planned) == record.config_hash:
            action, replace = Action.NOOP, False
        elif record.resource_type != node.type:
            action, replace = Action.CREATE, True
        else:
            change = self._registry.get(node.type).classify_change(prior, planned)
            replace = change == ChangeClass.REPLACE
            action = Action.CREATE if replace else Action.UPDATE

        logger.debug(
            "Classified %s as %s%s", node.id, action.value, " (replace)" if replace else ""
        )
        diff = config_diff(prior, planned) if action != Action.NOOP else {}
        return PlanStep(
            node_id=node.id,
            resource_type=node.type,
            action=action,
            level=0,
            replace=replace,
            node=node.model_copy(deep=True),
            prior=prior,
            planned=planned,
            diff=diff or None,
        )

    def _plan_destroys(self, state: State, removed: list[str], barrier: int) -> list[PlanStep]:
        """Destroy steps after *barrier*, unwinding recorded dependencies in reverse."""
        if not removed:
            return []

        removed_set = set(removed)
        # A node is destroyed only after everything that depended on it.
        former_dependents = {
            node_id: [
                other
                for other, rec in state.records.items()
                if other != node_id and node_id in rec.dependencies
            ]
            for node_id in removed
        }
        destroy_deps = {
            node_id: [d for d in deps if d in removed_set]
            for node_id, deps in former_dependents.items()
        }
        levels = DependencyResolver(removed, destroy_deps).level_of()

        steps: list[PlanStep] = []
        for node_id in removed:
            rec = state.records[node_id]
            self._registry.get(rec.resource_type)  # fail early if unknown
            logger.debug("Classified %s as destroy", node_id)
            steps.append(
                PlanStep(
                    node_id=node_id,
                    resource_type=rec.resource_type,
                    action=Action.DESTROY,
                    level=barrier + levels[node_id],
                    prior=dict(rec.config),
                    dependencies=former_dependents[node_id],
                )
            )
        index = {node_id: i for i, node_id in enumerate(removed)}
        return sorted(steps, key=lambda s: (s.level, index[s.node_id]))
