"""Plan/apply engine."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from infra_provisioner.core.provider import ProviderContext
from infra_provisioner.core.retry import RetryPolicy, call_with_retry
from infra_provisioner.core.state import State, StateStore, compute_state_digest
from infra_provisioner.engine.errors import ApplyCanceled, StalePlanError
from infra_provisioner.engine.executor import ApplyExecutor, ProgressCallback
from infra_provisioner.engine.graph import GraphBuilder, ResourceGraph
from infra_provisioner.engine.planner import Planner, config_diff
from infra_provisioner.engine.types import DriftReport

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.engine.registry import ResourceTypeRegistry
    from infra_provisioner.engine.types import ApplyResult, Plan
    from infra_provisioner.resources.base import ResourceNode
    from infra_provisioner.resources.output import OutputSpec

logger = logging.getLogger(__name__)


class ProvisioningEngine:
    """Terraform-like plan/apply engine over a declared resource graph."""

    def __init__(
        self,
        *,
        registry: ResourceTypeRegistry,
        state_path: Path,
        context: ProviderContext | None = None,
        policy: RetryPolicy | None = None,
        parallelism: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._registry = registry
        self._store = StateStore(state_path)
        self._context = context or ProviderContext()
        self._policy = policy or RetryPolicy()
        self._parallelism = parallelism
        self._sleep = sleep

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def state_path(self) -> Path:
        return self._store.path

    @property
    def context(self) -> ProviderContext:
        return self._context

    def build_graph(self, nodes: Sequence[ResourceNode]) -> ResourceGraph:
        return GraphBuilder(self._context).build(nodes)

    def plan(self, nodes: Sequence[ResourceNode], *, destroy: bool = False) -> Plan:
        """Compute the plan for *nodes* against the current state.

        Graph errors (unknown references, cycles) surface here, before
        anything is mutated.
        """
        graph = self.build_graph(nodes) if not destroy else ResourceGraph([], [])
        state = self._store.load()
        logger.debug("State loaded: serial=%d, %d records", state.serial, len(state.records))
        return Planner(self._registry).plan(graph, state, destroy=destroy)

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._store.path.exists():
            return self._store.load()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(lineage=plan.metadata.state_lineage, serial=plan.metadata.state_serial)

    def apply(
        self,
        plan: Plan,
        *,
        nodes: Sequence[ResourceNode] | None = None,
        exports: Sequence[OutputSpec] = (),
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> ApplyResult:
        """Execute *plan* under the exclusive session lock.

        Raises:
            StateLockedError: Another apply session holds the state.
            StalePlanError: State changed since the plan was computed.
        """
        with self._store.session():
            state = self._load_state_for_apply(plan)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            self._store.initialize(plan.metadata.state_lineage)
            graph = self.build_graph(nodes) if nodes is not None else None
            executor = ApplyExecutor(
                self._registry,
                self._store,
                context=self._context,
                policy=self._policy,
                parallelism=self._parallelism,
                sleep=self._sleep,
            )
            try:
                return executor.execute(
                    plan, graph=graph, exports=exports, cancel=cancel, progress=progress
                )
            except KeyboardInterrupt as e:  # pragma: no cover
                raise ApplyCanceled("Apply canceled") from e

    def drift(self) -> list[DriftReport]:
        """Compare recorded outputs with live provider reads (report only)."""
        state = self._store.load()
        reports: list[DriftReport] = []
        for node_id, rec in state.records.items():
            live = self._read(rec)
            if live is NotImplemented:
                logger.debug("Provider for %s cannot read; skipping drift check", node_id)
                continue
            if live is None:
                reports.append(
                    DriftReport(node_id=node_id, resource_type=rec.resource_type, missing=True)
                )
            elif live != rec.outputs:
                reports.append(
                    DriftReport(
                        node_id=node_id,
                        resource_type=rec.resource_type,
                        diff=config_diff(rec.outputs, live),
                    )
                )
        logger.info("Drift check: %d of %d nodes drifted", len(reports), len(state.records))
        return reports

    def _read(self, rec: StateRecord) -> object:
        provider = self._registry.get(rec.resource_type)
        try:
            return call_with_retry(
                lambda: provider.read(self._context, rec),
                self._policy,
                label=f"read {rec.node_id}",
                sleep=self._sleep,
            )
        except NotImplementedError:
            return NotImplemented
