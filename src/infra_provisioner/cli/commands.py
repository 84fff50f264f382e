"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from infra_provisioner.cli import app
from infra_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from infra_provisioner.config.schema import Config
    from infra_provisioner.engine.types import ApplyResult, Plan, PlanStep

DEFAULT_CONFIG = Path("infra-provisioner.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-node status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from infra_provisioner.cli.formatting import step_style
    from infra_provisioner.config import apply
    from infra_provisioner.engine.types import Action

    console = Console(no_color=not color)
    actionable = [s for s in plan_obj.steps if s.action != Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(step: PlanStep, event: Literal["start", "done"]) -> None:
            if step.action == Action.NOOP:
                return
            s = step_style(step)
            if event == "start":
                progress.update(task, description=f"{step.node_id}: {s.progress_verb}...")
            elif event == "done":
                progress.console.print(f"  {step.node_id}: {s.done_verb}")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print summary.

    Exits with code 0 if no actionable changes, 1 if any step did not apply.
    """
    from infra_provisioner.cli.formatting import (
        format_apply_result,
        format_outputs,
        format_plan,
        format_plan_summary,
    )

    if not plan_obj.has_changes():
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(plan_obj, cfg, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_result(result, color=color))
    outputs = format_outputs(result.outputs, cfg.outputs, color=color)
    if outputs:
        typer.echo()
        typer.echo(outputs)

    if not result.success:
        raise typer.Exit(1)


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Show changes required by the current configuration."""
    from infra_provisioner.cli.formatting import format_plan, format_plan_summary
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if plan_obj.has_changes():
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn
    from infra_provisioner.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = Plan.load(plan_file) if plan_file is not None else plan_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and live resources (report only)."""
    from infra_provisioner.cli.formatting import format_drift
    from infra_provisioner.config import drift as drift_fn
    from infra_provisioner.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        reports = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not reports:
        typer.echo("No drift detected. State matches live resources.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_drift(reports, color=color))
    raise typer.Exit(2)


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file and its resource graph."""
    from infra_provisioner.cli.formatting import styler
    from infra_provisioner.config import load
    from infra_provisioner.config.registry import build_registry
    from infra_provisioner.engine.graph import GraphBuilder
    from infra_provisioner.engine.resolver import resolve_graph

    color = _use_color(no_color)
    try:
        cfg = load(config)
        registry = build_registry(cfg)
        graph = GraphBuilder(cfg.provider.context()).build(cfg.resources)
        resolve_graph(graph)
        for node in graph.nodes:
            registry.get(node.type)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def rotate(
    secret_id: Annotated[
        str | None,
        typer.Argument(help="Secret to rotate. Rotates every due secret when omitted."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    force: Annotated[
        bool,
        typer.Option("--force", help="Rotate even if the interval has not elapsed."),
    ] = False,
    resume: Annotated[
        bool,
        typer.Option("--resume", help="Re-verify a rotation halted in testing."),
    ] = False,
    cancel: Annotated[
        bool,
        typer.Option("--cancel", help="Discard the pending version of a halted rotation."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Rotate secrets through the staged create/set/test/finish protocol."""
    from infra_provisioner.cli.formatting import format_rotation, styler
    from infra_provisioner.config import load
    from infra_provisioner.config import rotate as rotate_fn
    from infra_provisioner.config import rotator
    from infra_provisioner.config.loader import ConfigError

    color = _use_color(no_color)

    if cancel and (secret_id is None or force or resume):
        exc = ConfigError("--cancel needs a SECRET_ID and cannot be combined with other options")
        raise typer.Exit(handle_error(exc, color=color))

    try:
        cfg = load(config)
        if cancel:
            assert secret_id is not None
            rotator(cfg).cancel(secret_id)
            typer.echo(styler(color)(f"Discarded pending version of {secret_id}.", fg="yellow"))
            return
        outcomes = rotate_fn(cfg, secret_id, force=force, resume=resume)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_rotation(outcomes, color=color))
    if any(o.status == "failed" for o in outcomes):
        raise typer.Exit(1)
