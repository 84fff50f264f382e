"""CLI application for infra-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from infra_provisioner import __version__

app = typer.Typer(
    name="infra-provisioner",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"infra-provisioner {__version__}")
        raise typer.Exit


_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_PACKAGE_LOGGER = "infra_provisioner"
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_log_spec(spec: str) -> dict[str, int]:
    """Parse ``INFRA_LOG`` into logger levels.

    The value is a bare level for the whole package, or comma-separated
    ``component=level`` pairs scoped to a subpackage, e.g.
    ``INFRA_LOG=info,rotation=debug`` keeps the engine at info while
    tracing every rotation stage.  Unknown levels warn and fall back to INFO.
    """
    levels: dict[str, int] = {}
    for item in (part.strip() for part in spec.split(",")):
        if not item:
            continue
        component, _, level_name = item.rpartition("=")
        level_name = level_name.strip().upper()
        if level_name not in _VALID_LEVELS:
            print(
                f"WARNING: invalid INFRA_LOG level '{level_name}', "
                f"expected one of {', '.join(_VALID_LEVELS)}; defaulting to INFO",
                file=sys.stderr,
            )
            level_name = "INFO"
        name = f"{_PACKAGE_LOGGER}.{component.strip()}" if component else _PACKAGE_LOGGER
        levels[name] = getattr(logging, level_name)
    return levels


def _configure_logging(verbose: int) -> None:
    """Scope log levels to our loggers from ``-v`` flags and ``INFRA_LOG``.

    ``-v`` sets the package to INFO and ``-vv`` to DEBUG; ``INFRA_LOG``
    entries are applied afterwards and win for the loggers they name.
    Third-party loggers stay at WARNING.
    """
    levels: dict[str, int] = {}
    if verbose >= 1:
        levels[_PACKAGE_LOGGER] = logging.DEBUG if verbose >= 2 else logging.INFO
    levels.update(_parse_log_spec(os.environ.get("INFRA_LOG", "")))
    if not levels:
        return

    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v info, -vv debug).",
    ),
) -> None:
    """Plan, apply and rotate secrets for a declared infrastructure graph."""
    _ = version
    _configure_logging(verbose)


# Register commands after app is created to avoid circular imports.
from infra_provisioner.cli import commands as _commands  # noqa: E402, F401
