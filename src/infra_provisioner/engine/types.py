"""Engine types (plan, steps, apply results)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from infra_provisioner.resources.base import ResourceNode


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    NOOP = "no-op"


class StepStatus(str, Enum):
    APPLIED = "applied"
    NOOP = "no-op"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELED = "canceled"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool = False
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class PlanStep(BaseModel):
    """One classified action of a plan.

    ``replace`` marks a create that must first destroy the recorded resource
    (the change cannot be made in place).  ``dependencies`` lists the steps
    that must succeed before this one: producers for create/update/no-op
    steps, former dependents for destroy steps.
    """

    node_id: str
    resource_type: str
    action: Action
    level: int
    replace: bool = False
    node: ResourceNode | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    dependencies: list[str] = Field(default_factory=list)


def _summary_counts(pairs: list[tuple[Action, bool]]) -> dict[str, int]:
    counts = {a.value: 0 for a in Action}
    for action, replace in pairs:
        counts[action.value] += 1
        if replace:
            counts[Action.DESTROY.value] += 1
    return counts


class Plan(BaseModel):
    metadata: PlanMetadata
    steps: list[PlanStep]

    def levels(self) -> list[list[PlanStep]]:
        """Steps grouped by level, in level order."""
        grouped: dict[int, list[PlanStep]] = {}
        for step in self.steps:
            grouped.setdefault(step.level, []).append(step)
        return [grouped[level] for level in sorted(grouped)]

    def step(self, node_id: str, action: Action | None = None) -> PlanStep:
        for s in self.steps:
            if s.node_id == node_id and (action is None or s.action == action):
                return s
        raise KeyError(node_id)

    def has_changes(self) -> bool:
        return any(s.action != Action.NOOP for s in self.steps)

    def summary(self) -> dict[str, int]:
        return _summary_counts([(s.action, s.replace) for s in self.steps])

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class StepResult(BaseModel):
    node_id: str
    resource_type: str
    action: Action
    status: StepStatus
    replace: bool = False
    error: str | None = None
    outputs: dict[str, Any] = Field(default_factory=dict)


class ApplyResult(BaseModel):
    """Per-node report of an apply; complete even on partial failure."""

    steps: list[StepResult] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return all(s.status in (StepStatus.APPLIED, StepStatus.NOOP) for s in self.steps)

    def _ids(self, status: StepStatus) -> set[str]:
        return {s.node_id for s in self.steps if s.status == status}

    @property
    def failed(self) -> set[str]:
        return self._ids(StepStatus.FAILED)

    @property
    def skipped(self) -> set[str]:
        return self._ids(StepStatus.SKIPPED)

    @property
    def canceled(self) -> set[str]:
        return self._ids(StepStatus.CANCELED)

    def result(self, node_id: str) -> StepResult:
        for s in self.steps:
            if s.node_id == node_id:
                return s
        raise KeyError(node_id)

    def summary(self) -> dict[str, int]:
        return _summary_counts(
            [(s.action, s.replace) for s in self.steps if s.status == StepStatus.APPLIED]
        )


class DriftReport(BaseModel):
    node_id: str
    resource_type: str
    missing: bool = False
    diff: dict[str, Any] = Field(default_factory=dict)
