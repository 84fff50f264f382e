"""Plain-text plan, apply, drift and rotation listings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from infra_provisioner.engine.types import Action, StepStatus
from infra_provisioner.resources.references import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from infra_provisioner.engine.types import ApplyResult, DriftReport, Plan, PlanStep
    from infra_provisioner.resources.output import OutputSpec
    from infra_provisioner.rotation.machine import RotationOutcome


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str
    description: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete", "will be created"),
    "update": _ActionStyle(
        "yellow", "~", "Updating", "Update complete", "will be updated in-place"
    ),
    "replace": _ActionStyle(
        "magenta", "-/+", "Replacing", "Replacement complete", "must be replaced"
    ),
    "destroy": _ActionStyle("red", "-", "Destroying", "Destroy complete", "will be destroyed"),
    "no-op": _ActionStyle("bright_black", " ", "", "", "is up-to-date"),
}

_SENSITIVE = "(sensitive value)"


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def step_style(step: PlanStep) -> _ActionStyle:
    return _ACTION_STYLES["replace" if step.replace else step.action.value]


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if value == UNKNOWN:
        return UNKNOWN
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _step_attrs(step: PlanStep) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a step."""
    if step.action == Action.CREATE and not step.replace and step.planned:
        return {k: _format_value(v) for k, v in step.planned.items()}
    if step.diff:
        return {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            for k, d in step.diff.items()
        }
    return {}


def format_step(step: PlanStep, *, color: bool = True) -> str:
    """Render a single plan step as a diff block."""
    style = styler(color)
    s = step_style(step)
    sc = {"fg": s.color}
    lines = [
        style(f"  # {step.node_id} {s.description}", bold=True, **sc),
        style(f'  {s.symbol} {step.resource_type} "{step.node_id}" {{', **sc),
        *[
            style(f"      {s.symbol} {k} = {v}", **sc)
            for k, v in _align_values(_step_attrs(step))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the plan level by level; no-op steps are listed by name only."""
    if not plan.has_changes():
        return "No changes. Resources are up-to-date."

    style = styler(color)
    sections: list[str] = []
    for level in plan.levels():
        blocks = [style(f"Level {level[0].level}:", bold=True)]
        unchanged = [s.node_id for s in level if s.action == Action.NOOP]
        blocks.extend(format_step(s, color=color) for s in level if s.action != Action.NOOP)
        if unchanged:
            blocks.append(style(f"  unchanged: {', '.join(unchanged)}", fg="bright_black"))
        sections.append("\n\n".join(blocks))
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to destroy")
_APPLY_VERBS = ("added", "changed", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, N verb`` part of a summary line."""
    style = styler(color)
    counts = (summary.get("create", 0), summary.get("update", 0), summary.get("destroy", 0))
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def format_plan_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"Plan: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_result(result: ApplyResult, *, color: bool = True) -> str:
    """Render the apply summary line plus one line per step that did not apply."""
    style = styler(color)
    counts = _format_summary(result.summary(), _APPLY_VERBS, color=color)
    if result.success:
        header = style("Apply complete!", fg="green", bold=True)
        return f"{header} Resources: {counts}."

    lines = [f"{style('Apply incomplete.', fg='red', bold=True)} Resources: {counts}."]
    for step in result.steps:
        if step.status in (StepStatus.APPLIED, StepStatus.NOOP):
            continue
        fg = "red" if step.status == StepStatus.FAILED else "yellow"
        lines.append(style(f"  {step.node_id}: {step.status.value}: {step.error}", fg=fg))
    return "\n".join(lines)


def format_outputs(
    values: dict[str, Any], specs: Sequence[OutputSpec], *, color: bool = True
) -> str:
    """Render exported outputs; sensitive ones are masked."""
    if not values:
        return ""
    sensitive = {spec.name for spec in specs if spec.sensitive}
    style = styler(color)
    items = {
        name: _SENSITIVE if name in sensitive else _format_value(value)
        for name, value in values.items()
    }
    lines = [style("Outputs:", bold=True)]
    lines.extend(f"  {k} = {v}" for k, v in _align_values(items))
    return "\n".join(lines)


def format_drift(reports: Sequence[DriftReport], *, color: bool = True) -> str:
    style = styler(color)
    lines: list[str] = []
    for report in reports:
        if report.missing:
            lines.append(style(f"  - {report.node_id} ({report.resource_type}) is gone", fg="red"))
            continue
        lines.append(style(f"  ~ {report.node_id} ({report.resource_type})", fg="yellow"))
        for k, v in _align_values(
            {
                k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
                for k, d in report.diff.items()
            }
        ):
            lines.append(f"      {k} = {v}")
    return "\n".join(lines)


def format_rotation(outcomes: Sequence[RotationOutcome], *, color: bool = True) -> str:
    if not outcomes:
        return "No secrets due for rotation."
    style = styler(color)
    colors = {"rotated": "green", "skipped": "yellow", "failed": "red"}
    lines = []
    for o in outcomes:
        suffix = f": {o.error}" if o.error else ""
        lines.append(
            style(f"  {o.secret_id}: {o.status} ({o.stage.value}){suffix}", fg=colors[o.status])
        )
    return "\n".join(lines)
