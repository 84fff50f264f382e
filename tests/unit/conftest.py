"""Shared fixtures for unit tests."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

import pytest

from infra_provisioner.config import load
from infra_provisioner.core.retry import RetryPolicy
from infra_provisioner.engine import ProvisioningEngine, ResourceProvider, ResourceTypeRegistry
from infra_provisioner.engine.handlers import ChangeClass

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path

    from infra_provisioner.config.schema import Config
    from infra_provisioner.core.provider import ProviderContext
    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.resources.base import ResourceNode

_INFRA_ENV_VARS = (
    "INFRA_REGION",
    "INFRA_ENVIRONMENT",
    "INFRA_DEFAULT_TAGS",
    "INFRA_PARALLELISM",
    "INFRA_MAX_ATTEMPTS",
    "INFRA_BACKOFF_BASE_SECONDS",
    "INFRA_BACKOFF_MAX_SECONDS",
    "INFRA_STEP_TIMEOUT_SECONDS",
    "INFRA_ROTATION_INTERVAL_DAYS",
    "INFRA_LOG",
)


@pytest.fixture(autouse=True)
def _clean_infra_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove INFRA_* env vars so unit tests don't leak host config."""
    for var in _INFRA_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class InMemoryProvider(ResourceProvider):
    """Records calls and keeps live resources in a dict.

    Outputs are ``{"id": "<node>-<n>", **config}``; ``replace_on`` lists
    config keys whose change forces replacement.
    """

    def __init__(self, replace_on: tuple[str, ...] = ()) -> None:
        self.calls: list[tuple[str, str]] = []
        self.live: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.replace_on = replace_on
        self._counter = 0
        self._lock = threading.Lock()

    def fail(self, node_id: str, *errors: Exception) -> None:
        """Raise *errors* (one per call) for the next calls touching *node_id*."""
        self.failures.setdefault(node_id, []).extend(errors)

    def _record(self, op: str, node_id: str) -> None:
        with self._lock:
            self.calls.append((op, node_id))
            pending = self.failures.get(node_id)
            if pending:
                raise pending.pop(0)

    def _outputs(self, node: ResourceNode) -> dict[str, Any]:
        with self._lock:
            self._counter += 1
            outputs = {"id": f"{node.id}-{self._counter}", **node.config}
        self.live[node.id] = outputs
        return dict(outputs)

    def create(self, ctx: ProviderContext, node: ResourceNode) -> dict[str, Any]:
        _ = ctx
        self._record("create", node.id)
        return self._outputs(node)

    def update(
        self, ctx: ProviderContext, node: ResourceNode, prior: StateRecord
    ) -> dict[str, Any]:
        _ = ctx
        self._record("update", node.id)
        outputs = {**prior.outputs, **node.config}
        self.live[node.id] = outputs
        return dict(outputs)

    def destroy(self, ctx: ProviderContext, prior: StateRecord) -> None:
        _ = ctx
        self._record("destroy", prior.node_id)
        self.live.pop(prior.node_id, None)

    def classify_change(self, old: Mapping[str, Any], new: Mapping[str, Any]) -> ChangeClass:
        if any(old.get(k) != new.get(k) for k in self.replace_on):
            return ChangeClass.REPLACE
        return ChangeClass.IN_PLACE

    def read(self, ctx: ProviderContext, prior: StateRecord) -> dict[str, Any] | None:
        _ = ctx
        live = self.live.get(prior.node_id)
        return dict(live) if live is not None else None


@pytest.fixture
def provider() -> InMemoryProvider:
    return InMemoryProvider()


@pytest.fixture
def registry(provider: InMemoryProvider) -> ResourceTypeRegistry:
    reg = ResourceTypeRegistry()
    for resource_type in ("network", "database", "cache", "queue", "compute"):
        reg.register(resource_type, provider)
    return reg


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retries without real waiting."""
    return RetryPolicy(max_attempts=3, backoff_base_seconds=0.0, timeout_seconds=None)


@pytest.fixture
def engine(
    tmp_path: Path, registry: ResourceTypeRegistry, fast_policy: RetryPolicy
) -> ProvisioningEngine:
    return ProvisioningEngine(
        registry=registry,
        state_path=tmp_path / "state.json",
        policy=fast_policy,
        sleep=lambda _s: None,
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
