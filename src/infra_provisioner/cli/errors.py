"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from infra_provisioner.config.loader import ConfigError
    from infra_provisioner.engine.errors import (
        ApplyCanceled,
        CyclicDependencyError,
        StalePlanError,
        StateLockedError,
        UnknownReferenceError,
    )
    from infra_provisioner.rotation.errors import (
        RotationLockedError,
        RotationVerificationFailure,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, CyclicDependencyError | UnknownReferenceError):
        _err(f"Invalid resource graph: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateLockedError | RotationLockedError):
        _err(f"Locked: {exc}", fg=fg)
        _err("  Another session is running; retry once it finishes.", fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
    elif isinstance(exc, RotationVerificationFailure):
        _err(f"Rotation halted: {exc}", fg=fg)
        _err(
            f"  Fix the target, then run 'rotate {exc.secret_id} --resume' "
            f"or discard the pending version with 'rotate {exc.secret_id} --cancel'.",
            fg=fg,
        )
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
