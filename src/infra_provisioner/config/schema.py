"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra_provisioner.core.provider import ProviderContext
from infra_provisioner.core.retry import RetryPolicy
from infra_provisioner.resources.base import (
    ResourceNode,  # noqa: TC001 - Pydantic needs this at runtime
)
from infra_provisioner.resources.output import (
    OutputSpec,  # noqa: TC001 - Pydantic needs this at runtime
)
from infra_provisioner.rotation.models import DEFAULT_ROTATION_INTERVAL_DAYS


class ProviderConfig(BaseSettings):
    """Provider settings shared by every resource of a run.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``INFRA_`` prefix.  Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="INFRA_")

    region: str | None = None
    environment: str | None = None
    default_tags: dict[str, str] = Field(default_factory=dict)

    def context(self) -> ProviderContext:
        return ProviderContext(
            region=self.region,
            environment=self.environment,
            default_tags=dict(self.default_tags),
        )


class EngineSettings(BaseSettings):
    """Apply and rotation tuning, overridable via ``INFRA_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="INFRA_")

    parallelism: int = Field(default=10, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    step_timeout_seconds: float = Field(default=600.0, ge=0)
    rotation_interval_days: int = Field(default=DEFAULT_ROTATION_INTERVAL_DAYS, ge=1)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
            timeout_seconds=self.step_timeout_seconds or None,
        )


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


def _call_shorthand(v: Any) -> Any:
    return {"call": v} if isinstance(v, str) else v


class CallSpec(BaseModel):
    """A factory call: ``module.path:function`` (or an entry-point name) plus kwargs."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    call: str
    with_: dict[str, Any] = Field(default_factory=dict, alias="with")


_CallEntry = Annotated[CallSpec, BeforeValidator(_call_shorthand)]


class SecretSpec(BaseModel):
    """A secret registered for rotation and the target its credential lives on."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(pattern=r"^[a-zA-Z0-9_./-]+$")
    target: _CallEntry
    rotation_interval_days: int | None = Field(default=None, ge=1)


class Config(BaseModel):
    """Provisioning configuration; validates YAML structure directly."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    settings: EngineSettings = Field(default_factory=EngineSettings)
    state_path: Path = Path(".infra-state.json")
    secret_store_path: Path = Path(".infra-secrets.json")
    providers: Annotated[dict[str, _CallEntry], BeforeValidator(_none_to_dict)] = {}
    resources: Annotated[list[ResourceNode], BeforeValidator(_none_to_list)] = []
    outputs: Annotated[list[OutputSpec], BeforeValidator(_none_to_list)] = []
    secrets: Annotated[list[SecretSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()
