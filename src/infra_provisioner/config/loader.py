"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from infra_provisioner.config.schema import Config, EngineSettings
from infra_provisioner.resources.references import iter_references

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "region": "INFRA_REGION",
    "environment": "INFRA_ENVIRONMENT",
}


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val

    tags = raw_provider.get("default_tags")
    if tags is not None:
        if not isinstance(tags, dict):
            raise ConfigError("provider.default_tags must be a mapping")
        resolved["default_tags"] = {str(k): str(v) for k, v in tags.items()}

    return resolved


def _validate_references(config: Config) -> list[str]:
    """Check that every declared reference and ``depends_on`` names a declared node."""
    ids = {node.id for node in config.resources}
    errors: list[str] = []
    for node in config.resources:
        for dep in node.dependency_ids():
            if dep not in ids:
                errors.append(f"Resource '{node.id}' references undeclared resource '{dep}'")
    for output in config.outputs:
        for reference in iter_references(output.value):
            if reference.node_id not in ids:
                errors.append(
                    f"Output '{output.name}' references undeclared resource '{reference.node_id}'"
                )
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        raw["settings"] = EngineSettings(**(raw.get("settings") or {}))
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent

    errors = _validate_references(config)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
