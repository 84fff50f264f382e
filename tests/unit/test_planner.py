from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from infra_provisioner.core.state import State, StateRecord, compute_config_hash
from infra_provisioner.engine import Action, GraphBuilder, Planner, ResourceTypeRegistry
from infra_provisioner.engine.errors import UnknownResourceTypeError
from infra_provisioner.resources import UNKNOWN, ResourceNode

if TYPE_CHECKING:
    from infra_provisioner.engine import Plan

    from .conftest import InMemoryProvider


def _record(
    node_id: str,
    resource_type: str,
    config: dict | None = None,
    outputs: dict | None = None,
    dependencies: list[str] | None = None,
) -> StateRecord:
    config = config or {}
    return StateRecord(
        node_id=node_id,
        resource_type=resource_type,
        config=config,
        config_hash=compute_config_hash(resource_type, config),
        outputs=outputs or {"id": f"{node_id}-1"},
        dependencies=dependencies or [],
    )


def _plan(registry: ResourceTypeRegistry, nodes: list[ResourceNode], state: State) -> Plan:
    return Planner(registry).plan(GraphBuilder().build(nodes), state)


def _levels(plan: Plan) -> list[list[tuple[str, Action]]]:
    return [[(s.node_id, s.action) for s in level] for level in plan.levels()]


NETWORK = ResourceNode(id="network", type="network", config={"cidr": "10.0.0.0/16"})
DATABASE = ResourceNode(id="database", type="database", depends_on=["network"])
CACHE = ResourceNode(id="cache", type="cache", depends_on=["network"])


def _applied_state() -> State:
    return State(
        lineage="l",
        serial=3,
        records={
            "network": _record("network", "network", {"cidr": "10.0.0.0/16"}),
            "database": _record("database", "database", dependencies=["network"]),
            "cache": _record("cache", "cache", dependencies=["network"]),
        },
    )


def test_initial_plan_creates_in_dependency_levels(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [NETWORK, DATABASE, CACHE], State(lineage="l"))

    assert _levels(plan) == [
        [("network", Action.CREATE)],
        [("database", Action.CREATE), ("cache", Action.CREATE)],
    ]
    assert plan.summary()["create"] == 3


def test_removed_node_destroyed_after_unchanged_nodes(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [NETWORK, DATABASE], _applied_state())

    assert _levels(plan) == [
        [("network", Action.NOOP), ("database", Action.NOOP)],
        [("cache", Action.DESTROY)],
    ]
    assert plan.step("cache").prior == {}


def test_unchanged_declarations_are_all_noop(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [NETWORK, DATABASE, CACHE], _applied_state())

    assert not plan.has_changes()
    assert {s.action for s in plan.steps} == {Action.NOOP}
    assert all(s.diff is None for s in plan.steps)


def test_update_carries_diff(registry: ResourceTypeRegistry) -> None:
    network = ResourceNode(id="network", type="network", config={"cidr": "10.1.0.0/16"})

    plan = _plan(registry, [network, DATABASE, CACHE], _applied_state())

    step = plan.step("network")
    assert step.action == Action.UPDATE
    assert step.diff == {"cidr": {"from": "10.0.0.0/16", "to": "10.1.0.0/16"}}
    # Consumers of an updated producer wait for it.
    assert plan.step("database").level == 1


def test_replace_classified_by_provider(
    registry: ResourceTypeRegistry, provider: InMemoryProvider
) -> None:
    provider.replace_on = ("cidr",)
    network = ResourceNode(id="network", type="network", config={"cidr": "10.1.0.0/16"})

    plan = _plan(registry, [network, DATABASE, CACHE], _applied_state())

    step = plan.step("network")
    assert step.action == Action.CREATE
    assert step.replace
    assert plan.summary()["destroy"] == 1


def test_type_change_forces_replace(registry: ResourceTypeRegistry) -> None:
    cache = ResourceNode(id="cache", type="queue", depends_on=["network"])
    plan = _plan(registry, [NETWORK, DATABASE, cache], _applied_state())

    assert plan.step("cache").action == Action.CREATE
    assert plan.step("cache").replace


def test_reference_to_new_producer_is_unknown(registry: ResourceTypeRegistry) -> None:
    db = ResourceNode(id="database", type="database", config={"vpc": {"$ref": "network.id"}})

    plan = _plan(registry, [NETWORK, db], State(lineage="l"))

    assert plan.step("database").planned == {"vpc": UNKNOWN}
    assert plan.step("database").level == 1


def test_reference_to_recorded_producer_resolves(registry: ResourceTypeRegistry) -> None:
    state = _applied_state()
    db = ResourceNode(id="database", type="database", config={"vpc": {"$ref": "network.id"}})

    plan = _plan(registry, [NETWORK, db], state)

    step = plan.step("database")
    assert step.action == Action.UPDATE
    assert step.planned == {"vpc": "network-1"}


def test_destroys_unwind_recorded_dependencies(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [], _applied_state())

    assert _levels(plan) == [
        [("database", Action.DESTROY), ("cache", Action.DESTROY)],
        [("network", Action.DESTROY)],
    ]
    assert sorted(plan.step("network").dependencies) == ["cache", "database"]


def test_destroy_plan_ignores_declarations(registry: ResourceTypeRegistry) -> None:
    plan = Planner(registry).plan(GraphBuilder().build([]), _applied_state(), destroy=True)

    assert plan.metadata.destroy
    assert [s.action for s in plan.steps] == [Action.DESTROY] * 3
    assert plan.levels()[-1][0].node_id == "network"


def test_destroy_waits_for_surviving_former_dependent(registry: ResourceTypeRegistry) -> None:
    # cache was built on network; network goes away, cache moves to another producer.
    state = _applied_state()
    other = ResourceNode(id="other", type="network")
    cache = ResourceNode(id="cache", type="cache", depends_on=["other"])

    plan = _plan(registry, [other, cache], state)

    network = plan.step("network")
    assert network.action == Action.DESTROY
    assert "cache" in network.dependencies
    assert network.level > plan.step("cache").level


def test_plan_metadata_tracks_state(registry: ResourceTypeRegistry) -> None:
    state = _applied_state()
    plan = _plan(registry, [NETWORK], state)

    assert plan.metadata.state_lineage == "l"
    assert plan.metadata.state_serial == 3
    assert plan.metadata.config_digest


def test_unknown_type_fails_before_planning(registry: ResourceTypeRegistry) -> None:
    with pytest.raises(UnknownResourceTypeError):
        _plan(registry, [ResourceNode(id="x", type="mystery")], State(lineage="l"))


def test_planning_does_not_mutate_inputs(registry: ResourceTypeRegistry) -> None:
    state = _applied_state()
    before = state.model_dump()
    node = ResourceNode(id="network", type="network", config={"cidr": "10.9.0.0/16"})

    _plan(registry, [node], state)

    assert state.model_dump() == before
    assert node.config == {"cidr": "10.9.0.0/16"}


# q -> p -> c, each forwarding its producer's cidr.
CHAIN_Q = ResourceNode(id="q", type="network", config={"cidr": "10.0.0.0/16"})
CHAIN_P = ResourceNode(id="p", type="database", config={"cidr": {"$ref": "q.cidr"}})
CHAIN_C = ResourceNode(id="c", type="cache", config={"cidr": {"$ref": "p.cidr"}})
CHAIN_D = ResourceNode(id="d", type="compute", config={"cidr": {"$ref": "c.cidr"}})


def _chain_state() -> State:
    cidr = {"cidr": "10.0.0.0/16"}
    return State(
        lineage="l",
        records={
            "q": _record("q", "network", cidr, {"id": "q-1", **cidr}),
            "p": _record("p", "database", cidr, {"id": "p-1", **cidr}, ["q"]),
            "c": _record("c", "cache", cidr, {"id": "c-1", **cidr}, ["p"]),
        },
    )


def _assert_producers_first(plan: Plan) -> None:
    """Every producer that may still change runs on an earlier level than its consumer."""
    for step in plan.steps:
        if step.action == Action.DESTROY:
            continue
        for producer_id in step.dependencies:
            producer = plan.step(producer_id)
            if producer.action == Action.NOOP and producer.level == 0:
                continue
            assert producer.level < step.level, (producer_id, step.node_id)


def test_noop_behind_pending_producer_keeps_consumers_waiting(
    registry: ResourceTypeRegistry,
) -> None:
    q = ResourceNode(id="q", type="network", config={"cidr": "10.1.0.0/16"})

    plan = _plan(registry, [q, CHAIN_P, CHAIN_C], _chain_state())

    assert _levels(plan) == [
        [("q", Action.UPDATE)],
        [("p", Action.NOOP)],
        [("c", Action.NOOP)],
    ]


def test_unchanged_chain_stays_on_one_level(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [CHAIN_Q, CHAIN_P, CHAIN_C], _chain_state())

    assert [s.level for s in plan.steps] == [0, 0, 0]


@pytest.mark.parametrize(
    "nodes",
    [
        pytest.param([CHAIN_Q, CHAIN_P, CHAIN_C, CHAIN_D], id="new-tail"),
        pytest.param(
            [
                ResourceNode(id="q", type="network", config={"cidr": "10.1.0.0/16"}),
                CHAIN_P,
                CHAIN_C,
                CHAIN_D,
            ],
            id="head-updated",
        ),
        pytest.param(
            [
                CHAIN_Q,
                ResourceNode(
                    id="p", type="database", config={"cidr": {"$ref": "q.cidr"}, "size": "l"}
                ),
                CHAIN_C,
                CHAIN_D,
            ],
            id="middle-updated",
        ),
        pytest.param(
            [
                CHAIN_Q,
                ResourceNode(id="p", type="queue", config={"cidr": {"$ref": "q.cidr"}}),
                CHAIN_C,
            ],
            id="middle-replaced",
        ),
        pytest.param(
            [
                CHAIN_Q,
                CHAIN_P,
                ResourceNode(id="c", type="cache", config={"cidr": "10.9.0.0/16"}),
                CHAIN_D,
            ],
            id="tail-updated",
        ),
    ],
)
def test_plan_levels_order_producers_before_consumers(
    registry: ResourceTypeRegistry, nodes: list[ResourceNode]
) -> None:
    plan = _plan(registry, nodes, _chain_state())

    assert plan.has_changes()
    _assert_producers_first(plan)


def test_plan_levels_on_fresh_state(registry: ResourceTypeRegistry) -> None:
    plan = _plan(registry, [CHAIN_Q, CHAIN_P, CHAIN_C, CHAIN_D], State(lineage="l"))

    assert [s.level for s in plan.steps] == [0, 1, 2, 3]
    _assert_producers_first(plan)
