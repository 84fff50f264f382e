"""Provider registry and rotation targets built from ``module:factory`` calls."""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_provisioner.config.loader import ConfigError
from infra_provisioner.engine.handlers import ResourceProvider
from infra_provisioner.engine.registry import ResourceTypeRegistry
from infra_provisioner.rotation.target import RotationTarget

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import ModuleType

    from infra_provisioner.config.schema import CallSpec, Config

PROVIDER_ENTRY_POINTS = "infra_provisioner.providers"
TARGET_ENTRY_POINTS = "infra_provisioner.rotation_targets"


def _load_local_module(module_path: str, config_dir: Path) -> ModuleType:
    """Load a Python module from a file relative to *config_dir*."""
    parts = module_path.split(".")
    candidates = [
        config_dir / Path(*parts).with_suffix(".py"),
        config_dir / Path(*parts) / "__init__.py",
    ]
    file_path = next((p for p in candidates if p.exists()), None)
    if file_path is None:
        raise ConfigError(f"Module '{module_path}' not found relative to {config_dir}")

    spec = importlib.util.spec_from_file_location(module_path, file_path)
    if spec is None or spec.loader is None:
        raise ConfigError(f"Failed to create module spec for '{file_path}'")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def resolve_callable(call: str, config_dir: Path, group: str) -> Callable[..., Any]:
    """Resolve a *call* string to a Python callable.

    Resolution order:

    1. No ``:``: entry-point lookup in *group*.
    2. Has ``:``: split into ``module_path:function_name``.
       a. Try ``importlib.import_module`` (installed packages).
       b. Fall back to ``spec_from_file_location`` (local files relative to *config_dir*).
    """
    if ":" not in call:
        eps = list(importlib.metadata.entry_points(group=group, name=call))
        if not eps:
            raise ConfigError(f"No entry point found for '{call}' in group '{group}'")
        return eps[0].load()

    module_path, _, function_name = call.rpartition(":")
    if not module_path or not function_name:
        raise ConfigError(f"Invalid call syntax '{call}': expected 'module.path:function_name'")

    try:
        mod = importlib.import_module(module_path)
    except ModuleNotFoundError:
        mod = _load_local_module(module_path, config_dir)

    obj = getattr(mod, function_name, None)
    if not callable(obj):
        raise ConfigError(
            f"'{call}' is not a callable attribute"
            if obj is not None
            else f"Module has no attribute '{function_name}' (from '{call}')"
        )
    return obj


def _instantiate(spec: CallSpec, config_dir: Path, group: str, expected: type) -> Any:
    """Call the factory named by *spec* and check what it returns."""
    fn = resolve_callable(spec.call, config_dir, group)
    try:
        obj = fn(**spec.with_)
    except ConfigError:
        raise
    except Exception as exc:
        raise ConfigError(f"'{spec.call}' raised {type(exc).__name__}: {exc}") from exc

    if not isinstance(obj, expected):
        raise ConfigError(f"'{spec.call}' must return a {expected.__name__}")
    return obj


def build_registry(config: Config) -> ResourceTypeRegistry:
    """Create a registry with one provider per configured resource type."""
    registry = ResourceTypeRegistry()
    for resource_type, spec in config.providers.items():
        provider = _instantiate(spec, config.config_dir, PROVIDER_ENTRY_POINTS, ResourceProvider)
        registry.register(resource_type, provider)
    return registry


def build_targets(config: Config) -> dict[str, RotationTarget]:
    """Instantiate the rotation target of every configured secret."""
    return {
        secret.id: _instantiate(
            secret.target, config.config_dir, TARGET_ENTRY_POINTS, RotationTarget
        )
        for secret in config.secrets
    }
