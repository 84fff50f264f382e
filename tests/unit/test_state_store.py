from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from infra_provisioner.core.state import (
    State,
    StateRecord,
    StateStore,
    compute_config_hash,
    compute_state_digest,
)
from infra_provisioner.engine.errors import StateLockedError
from infra_provisioner.engine.lock import StateLock


def _record(node_id: str, **kwargs: object) -> StateRecord:
    return StateRecord(node_id=node_id, resource_type="network", **kwargs)


class TestStateDigest:
    def test_ignores_timestamps(self) -> None:
        t1 = datetime(2024, 1, 1, tzinfo=UTC)
        t2 = datetime(2025, 6, 1, tzinfo=UTC)
        s1 = State(lineage="l", records={"a": _record("a", created_at=t1, last_applied_at=t1)})
        s2 = State(lineage="l", records={"a": _record("a", created_at=t2, last_applied_at=t2)})
        assert compute_state_digest(s1) == compute_state_digest(s2)

    def test_changes_with_outputs(self) -> None:
        s1 = State(lineage="l", records={"a": _record("a", outputs={"id": "1"})})
        s2 = State(lineage="l", records={"a": _record("a", outputs={"id": "2"})})
        assert compute_state_digest(s1) != compute_state_digest(s2)

    def test_changes_with_serial(self) -> None:
        assert compute_state_digest(State(lineage="l")) != compute_state_digest(
            State(lineage="l", serial=1)
        )

    def test_dependency_order_is_irrelevant(self) -> None:
        s1 = State(lineage="l", records={"a": _record("a", dependencies=["x", "y"])})
        s2 = State(lineage="l", records={"a": _record("a", dependencies=["y", "x"])})
        assert compute_state_digest(s1) == compute_state_digest(s2)


def test_config_hash_is_key_order_independent() -> None:
    assert compute_config_hash("network", {"a": 1, "b": 2}) == compute_config_hash(
        "network", {"b": 2, "a": 1}
    )
    assert compute_config_hash("network", {"a": 1}) != compute_config_hash("cache", {"a": 1})


def test_save_writes_backup_of_previous_state(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    State(lineage="l", serial=1).save(path)
    State(lineage="l", serial=2).save(path)

    assert State.load(path).serial == 2
    assert State.load(Path(str(path) + ".backup")).serial == 1


def test_store_writes_bump_serial(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    store.initialize("lineage-1")

    store.put_record(_record("a", outputs={"id": "1"}))
    store.put_record(_record("b"))
    store.remove_record("b")
    store.set_outputs({"endpoint": "x"})

    state = store.load()
    assert state.lineage == "lineage-1"
    assert state.serial == 4
    assert list(state.records) == ["a"]
    assert state.outputs == {"endpoint": "x"}


def test_put_record_keeps_created_at(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    first = datetime(2024, 1, 1, tzinfo=UTC)
    store.put_record(_record("a", created_at=first, last_applied_at=first))
    store.put_record(_record("a", outputs={"id": "2"}))

    rec = store.load().records["a"]
    assert rec.created_at == first
    assert rec.last_applied_at > first


def test_initialize_keeps_existing_state(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    store.initialize("first")
    store.put_record(_record("a"))
    store.initialize("second")

    state = store.load()
    assert state.lineage == "first"
    assert "a" in state.records


def test_session_lock_fails_fast(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    with store.session(), pytest.raises(StateLockedError), StateLock(store.path):
        pass


def test_session_lock_released_after_exit(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    with store.session():
        pass
    with StateLock(store.path):
        pass
