"""YAML configuration loading and convenience plan/apply/rotate API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.config.loader import ConfigError, load_config
from infra_provisioner.config.registry import build_registry, build_targets
from infra_provisioner.config.schema import Config, EngineSettings, ProviderConfig
from infra_provisioner.engine.engine import ProvisioningEngine
from infra_provisioner.rotation.machine import RotationOutcome, SecretRotator
from infra_provisioner.rotation.store import SecretStore

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from infra_provisioner.engine.executor import ProgressCallback
    from infra_provisioner.engine.types import ApplyResult, DriftReport, Plan


__all__ = [
    "Config",
    "ConfigError",
    "EngineSettings",
    "ProviderConfig",
    "apply",
    "drift",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "rotate",
    "rotator",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def _engine_from_config(config: Config) -> ProvisioningEngine:
    """Build a ``ProvisioningEngine`` from a ``Config`` instance."""
    return ProvisioningEngine(
        registry=build_registry(config),
        state_path=config.state_path,
        context=config.provider.context(),
        policy=config.settings.retry_policy(),
        parallelism=config.settings.parallelism,
    )


def plan(config: Config, *, destroy: bool = False) -> Plan:
    """Plan changes for the given configuration."""
    return _engine_from_config(config).plan(config.resources, destroy=destroy)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = _engine_from_config(config)
    return engine.apply(
        plan_obj,
        nodes=None if plan_obj.metadata.destroy else config.resources,
        exports=config.outputs,
        cancel=cancel,
        progress=progress,
    )


def plan_and_apply(config: Config, *, destroy: bool = False) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy)
    return apply(plan_obj, config)


def drift(config: Config) -> list[DriftReport]:
    """Detect drift between the state file and live resources (report only)."""
    return _engine_from_config(config).drift()


def rotator(config: Config) -> SecretRotator:
    """Build a rotator over the configured secrets, registering any new ones."""
    store = SecretStore(config.secret_store_path)
    for secret in config.secrets:
        store.register(
            secret.id,
            rotation_interval_days=secret.rotation_interval_days
            or config.settings.rotation_interval_days,
        )
    return SecretRotator(store, build_targets(config), policy=config.settings.retry_policy())


def rotate(
    config: Config,
    secret_id: str | None = None,
    *,
    force: bool = False,
    resume: bool = False,
) -> list[RotationOutcome]:
    """Rotate *secret_id*, or every configured secret that is due."""

    rot = rotator(config)
    if secret_id is None:
        return rot.rotate_due()
    before = rot.store.get(secret_id).state.last_rotated_at
    state = rot.rotate(secret_id, force=force, resume=resume)
    status = "rotated" if state.last_rotated_at != before else "skipped"
    return [RotationOutcome(secret_id, status, state.stage)]
