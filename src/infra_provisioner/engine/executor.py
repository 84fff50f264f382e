"""Level-parallel apply executor.

Steps of one level run concurrently on a bounded thread pool; a level only
starts once every step of the previous level is terminal.  Outputs produced
by a level are published to the transient output map after its barrier, so
later levels can reference freshly created resources.

A failed step never aborts the whole plan: its dependents are skipped,
unrelated steps carry on, and state is written only for steps that succeed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from infra_provisioner.core.retry import RetryPolicy, call_with_retry
from infra_provisioner.core.state import StateRecord, compute_config_hash
from infra_provisioner.engine.errors import ProviderPermanentError
from infra_provisioner.engine.handlers import ChangeClass
from infra_provisioner.engine.types import (
    Action,
    ApplyResult,
    PlanStep,
    StepResult,
    StepStatus,
)
from infra_provisioner.resources.base import NodeStatus
from infra_provisioner.resources.references import resolve_references

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from infra_provisioner.core.provider import ProviderContext
    from infra_provisioner.core.state import StateStore
    from infra_provisioner.engine.graph import ResourceGraph
    from infra_provisioner.engine.registry import ResourceTypeRegistry
    from infra_provisioner.engine.types import Plan
    from infra_provisioner.resources.output import OutputSpec

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PlanStep, Literal["start", "done"]], None]

_BLOCKING = frozenset({StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.CANCELED})


class ApplyExecutor:
    """Executes a plan level by level against the registered providers."""

    def __init__(
        self,
        registry: ResourceTypeRegistry,
        store: StateStore,
        *,
        context: ProviderContext,
        policy: RetryPolicy | None = None,
        parallelism: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self._registry = registry
        self._store = store
        self._context = context
        self._policy = policy or RetryPolicy()
        self._parallelism = parallelism
        self._sleep = sleep

    def execute(
        self,
        plan: Plan,
        *,
        graph: ResourceGraph | None = None,
        exports: Sequence[OutputSpec] = (),
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> ApplyResult:
        cancel = cancel or threading.Event()
        state = self._store.load()
        records = dict(state.records)

        # Transient output map: recorded outputs, minus anything being recreated.
        outputs: dict[str, dict[str, Any] | None] = state.outputs_by_node()
        for step in plan.steps:
            if step.action in (Action.CREATE, Action.DESTROY):
                outputs[step.node_id] = None

        statuses: dict[str, StepStatus] = {}
        results: dict[str, StepResult] = {}
        levels = plan.levels()
        logger.info("Applying %d steps in %d levels", len(plan.steps), len(levels))

        for i, level in enumerate(levels):
            if cancel.is_set():
                remaining = [s for lvl in levels[i:] for s in lvl]
                logger.warning("Apply canceled; %d steps not started", len(remaining))
                for step in remaining:
                    results[step.node_id] = _result(step, StepStatus.CANCELED, error="canceled")
                break

            runnable: list[PlanStep] = []
            for step in level:
                blocked = [d for d in step.dependencies if statuses.get(d) in _BLOCKING]
                if blocked:
                    logger.warning("Skipping %s: dependency failed (%s)", step.node_id, blocked)
                    results[step.node_id] = _result(
                        step,
                        StepStatus.SKIPPED,
                        error=f"dependency not applied: {', '.join(blocked)}",
                    )
                else:
                    runnable.append(step)

            level_results = self._run_level(runnable, outputs, records, graph, cancel, progress)
            for step, result in zip(runnable, level_results, strict=True):
                results[step.node_id] = result
                if result.status == StepStatus.APPLIED:
                    produced = None if step.action == Action.DESTROY else result.outputs
                    outputs[step.node_id] = produced

            for node_id, result in results.items():
                statuses[node_id] = result.status

        ordered = [results[s.node_id] for s in plan.steps if s.node_id in results]
        exported = self._export(exports, outputs, state.outputs)
        result = ApplyResult(steps=ordered, outputs=exported)
        logger.info(
            "Apply finished: success=%s failed=%s skipped=%s",
            result.success,
            sorted(result.failed),
            sorted(result.skipped),
        )
        return result

    def _run_level(
        self,
        steps: list[PlanStep],
        outputs: Mapping[str, Mapping[str, Any] | None],
        records: Mapping[str, StateRecord],
        graph: ResourceGraph | None,
        cancel: threading.Event,
        progress: ProgressCallback | None,
    ) -> list[StepResult]:
        if not steps:
            return []

        workers = min(self._parallelism, len(steps))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="apply") as pool:
            futures = [
                pool.submit(self._run_step, step, outputs, records, graph, progress)
                for step in steps
            ]
            try:
                wait(futures)
            except KeyboardInterrupt:
                # Dispatched steps run to completion; later levels are canceled.
                logger.warning("Cancel requested; waiting for in-flight steps")
                cancel.set()
        return [f.result() for f in futures]

    def _run_step(
        self,
        step: PlanStep,
        outputs: Mapping[str, Mapping[str, Any] | None],
        records: Mapping[str, StateRecord],
        graph: ResourceGraph | None,
        progress: ProgressCallback | None,
    ) -> StepResult:
        node = graph.get(step.node_id) if graph is not None and step.node_id in graph else None
        if node is not None and step.action != Action.DESTROY:
            node.status = NodeStatus.APPLYING
        if progress:
            progress(step, "start")

        try:
            if step.action == Action.DESTROY:
                result = self._destroy(step, records)
            else:
                result = self._create_or_update(step, outputs, records)
        except Exception as e:
            logger.error("Step %s (%s) failed: %s", step.node_id, step.action.value, e)
            if node is not None:
                node.status = NodeStatus.FAILED
            if progress:
                progress(step, "done")
            return _result(step, StepStatus.FAILED, error=str(e) or type(e).__name__)

        if node is not None:
            node.status = (
                NodeStatus.DESTROYED if step.action == Action.DESTROY else NodeStatus.APPLIED
            )
        if progress:
            progress(step, "done")
        return result

    def _call(self, fn: Callable[[], Any], label: str) -> Any:
        return call_with_retry(fn, self._policy, label=label, sleep=self._sleep)

    def _destroy(self, step: PlanStep, records: Mapping[str, StateRecord]) -> StepResult:
        prior = records.get(step.node_id)
        if prior is None:
            raise ProviderPermanentError(f"No recorded state for {step.node_id}")
        provider = self._registry.get(prior.resource_type)
        self._call(lambda: provider.destroy(self._context, prior), f"destroy {step.node_id}")
        self._store.remove_record(step.node_id)
        logger.info("Destroyed %s", step.node_id)
        return _result(step, StepStatus.APPLIED)

    def _create_or_update(
        self,
        step: PlanStep,
        outputs: Mapping[str, Mapping[str, Any] | None],
        records: Mapping[str, StateRecord],
    ) -> StepResult:
        if step.node is None:
            raise ValueError(f"Missing node declaration for {step.action.value}: {step.node_id}")

        resolved, complete = resolve_references(step.node.config, outputs)
        if not complete:
            missing = [str(r) for r in step.node.references() if _unresolved(r, outputs)]
            raise ProviderPermanentError(
                f"Unresolved references in {step.node_id}: {', '.join(missing)}"
            )

        config_hash = compute_config_hash(step.node.type, resolved)
        prior = records.get(step.node_id)
        action, replace = self._effective_action(step, prior, config_hash, resolved)

        if action == Action.NOOP:
            assert prior is not None
            return _result(step, StepStatus.NOOP, action=action, outputs=dict(prior.outputs))

        provider = self._registry.get(step.node.type)
        node = step.node.model_copy(update={"config": resolved}, deep=True)
        label = f"{action.value} {step.node_id}"

        if action == Action.UPDATE:
            assert prior is not None
            produced = self._call(lambda: provider.update(self._context, node, prior), label)
        else:
            if replace and prior is not None:
                old_provider = self._registry.get(prior.resource_type)
                self._call(
                    lambda: old_provider.destroy(self._context, prior), f"replace {step.node_id}"
                )
                self._store.remove_record(step.node_id)
            produced = self._call(lambda: provider.create(self._context, node), label)

        produced = dict(produced or {})
        now = datetime.now(UTC)
        self._store.put_record(
            StateRecord(
                node_id=step.node_id,
                resource_type=step.node.type,
                config_hash=config_hash,
                config=resolved,
                outputs=produced,
                dependencies=list(step.dependencies),
                created_at=now,
                last_applied_at=now,
            )
        )
        logger.info("Applied %s: %s%s", step.node_id, action.value, " (replace)" if replace else "")
        return _result(step, StepStatus.APPLIED, action=action, replace=replace, outputs=produced)

    def _effective_action(
        self,
        step: PlanStep,
        prior: StateRecord | None,
        config_hash: str,
        resolved: dict[str, Any],
    ) -> tuple[Action, bool]:
        """Re-check the planned action against outputs known at execution time."""
        if step.action == Action.CREATE:
            return Action.CREATE, step.replace and prior is not None
        if prior is None:
            return Action.CREATE, False
        if prior.config_hash == config_hash:
            return Action.NOOP, False
        if step.node is not None and prior.resource_type != step.node.type:
            return Action.CREATE, True
        change = self._registry.get(prior.resource_type).classify_change(prior.config, resolved)
        if change == ChangeClass.REPLACE:
            return Action.CREATE, True
        return Action.UPDATE, False

    def _export(
        self,
        exports: Sequence[OutputSpec],
        outputs: Mapping[str, Mapping[str, Any] | None],
        previous: Mapping[str, Any],
    ) -> dict[str, Any]:
        exported: dict[str, Any] = {}
        for spec in exports:
            value, complete = resolve_references(spec.value, outputs)
            if complete:
                exported[spec.name] = value
            else:
                logger.warning("Output %s is not available after apply", spec.name)
        if exported != dict(previous):
            self._store.set_outputs(exported)
        return exported


def _unresolved(reference: Any, outputs: Mapping[str, Mapping[str, Any] | None]) -> bool:
    produced = outputs.get(reference.node_id)
    return produced is None or reference.attribute not in produced


def _result(
    step: PlanStep,
    status: StepStatus,
    *,
    action: Action | None = None,
    replace: bool | None = None,
    error: str | None = None,
    outputs: dict[str, Any] | None = None,
) -> StepResult:
    return StepResult(
        node_id=step.node_id,
        resource_type=step.resource_type,
        action=action or step.action,
        status=status,
        replace=step.replace if replace is None else replace,
        error=error,
        outputs=outputs or {},
    )
