from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from infra_provisioner.core.provider import ProviderContext
from infra_provisioner.engine import (
    Action,
    CyclicDependencyError,
    Plan,
    ProvisioningEngine,
    StalePlanError,
    StateLockedError,
    UnknownReferenceError,
)
from infra_provisioner.engine.lock import StateLock
from infra_provisioner.resources import ResourceNode

if TYPE_CHECKING:
    from pathlib import Path

    from infra_provisioner.engine import ResourceTypeRegistry

    from .conftest import InMemoryProvider


NETWORK = ResourceNode(id="network", type="network", config={"cidr": "10.0.0.0/16"})
DATABASE = ResourceNode(id="database", type="database", config={"vpc": {"$ref": "network.id"}})


def test_saved_plan_roundtrip(engine: ProvisioningEngine, tmp_path: Path) -> None:
    plan = engine.plan([NETWORK, DATABASE])
    plan_path = tmp_path / "plan.json"
    plan.save(plan_path)

    loaded = Plan.load(plan_path)
    assert loaded.step("database").node == plan.step("database").node

    result = engine.apply(loaded)

    assert result.success
    state = engine.store.load()
    assert state.lineage == plan.metadata.state_lineage
    assert set(state.records) == {"network", "database"}


def test_stale_plan_is_rejected(engine: ProvisioningEngine) -> None:
    engine.apply(engine.plan([NETWORK]), nodes=[NETWORK])
    stale = engine.plan([NETWORK, DATABASE])
    engine.apply(engine.plan([NETWORK, DATABASE]), nodes=[NETWORK, DATABASE])

    with pytest.raises(StalePlanError):
        engine.apply(stale)


def test_plan_from_other_lineage_is_rejected(
    engine: ProvisioningEngine, registry: ResourceTypeRegistry, tmp_path: Path
) -> None:
    engine.apply(engine.plan([NETWORK]))
    other = ProvisioningEngine(registry=registry, state_path=tmp_path / "other.json")
    other.apply(other.plan([NETWORK]))

    with pytest.raises(StalePlanError, match="lineage"):
        engine.apply(other.plan([NETWORK, DATABASE]))


def test_concurrent_apply_fails_fast(engine: ProvisioningEngine) -> None:
    plan = engine.plan([NETWORK])
    with StateLock(engine.state_path), pytest.raises(StateLockedError):
        engine.apply(plan)
    assert not engine.state_path.exists()


def test_graph_errors_surface_at_plan_time(
    engine: ProvisioningEngine, provider: InMemoryProvider
) -> None:
    with pytest.raises(UnknownReferenceError):
        engine.plan([DATABASE])

    a = ResourceNode(id="a", type="network", depends_on=["b"])
    b = ResourceNode(id="b", type="network", config={"x": {"$ref": "a.id"}})
    with pytest.raises(CyclicDependencyError):
        engine.plan([a, b])

    assert provider.calls == []
    assert not engine.state_path.exists()


def test_destroy_plan_removes_everything(
    engine: ProvisioningEngine, provider: InMemoryProvider
) -> None:
    engine.apply(engine.plan([NETWORK, DATABASE]))

    plan = engine.plan([NETWORK, DATABASE], destroy=True)
    assert [s.node_id for s in plan.steps] == ["database", "network"]

    result = engine.apply(plan)

    assert result.success
    assert provider.live == {}
    assert engine.store.load().records == {}


def test_context_default_tags_reach_provider(
    tmp_path: Path, registry: ResourceTypeRegistry, provider: InMemoryProvider
) -> None:
    engine = ProvisioningEngine(
        registry=registry,
        state_path=tmp_path / "state.json",
        context=ProviderContext(environment="prod", default_tags={"Environment": "prod"}),
    )
    node = ResourceNode(id="network", type="network", config={"tags": {"Name": "main"}})

    engine.apply(engine.plan([node]), nodes=[node])

    assert provider.live["network"]["tags"] == {"Environment": "prod", "Name": "main"}


class TestDrift:
    def test_no_drift_after_apply(self, engine: ProvisioningEngine) -> None:
        engine.apply(engine.plan([NETWORK]))
        assert engine.drift() == []

    def test_changed_and_missing_resources_reported(
        self, engine: ProvisioningEngine, provider: InMemoryProvider
    ) -> None:
        engine.apply(engine.plan([NETWORK, DATABASE]))
        provider.live["network"]["cidr"] = "192.168.0.0/16"
        del provider.live["database"]

        reports = {r.node_id: r for r in engine.drift()}

        assert reports["network"].diff == {
            "cidr": {"from": "10.0.0.0/16", "to": "192.168.0.0/16"}
        }
        assert reports["database"].missing
        # Reporting only: state is untouched.
        assert engine.plan([NETWORK, DATABASE]).step("network").action == Action.NOOP
