"""State management for tracking applied resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_config_hash(resource_type: str, config: Mapping[str, Any]) -> str:
    """Compute a stable hash for a node's fully resolved configuration."""
    payload = _canonical_json({"type": resource_type, "config": config})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(UTC)


class StateRecord(BaseModel):
    """Last-applied snapshot of a single node.

    Attributes:
        node_id: Stable node id (e.g., "aurora_cluster")
        resource_type: Type tag of the node (e.g., "rds_cluster")
        config_hash: SHA256 of the resolved configuration at last apply
        config: Resolved configuration at last apply
        outputs: Output attributes returned by the provider
        dependencies: Producer ids at last apply (used to unwind destroys)
        created_at: When the node was first applied
        last_applied_at: When the node was last applied
    """

    node_id: str
    resource_type: str
    config_hash: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    last_applied_at: datetime = Field(default_factory=_now)


class State(BaseModel):
    """Terraform-style state file for tracking applied nodes.

    Attributes:
        version: State file format version
        serial: Incremented on every persisted change
        lineage: Identity of this state history
        records: Mapping of node ids to records
        outputs: Exported output values
    """

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    records: dict[str, StateRecord] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def outputs_by_node(self) -> dict[str, dict[str, Any]]:
        """Last-known outputs for every recorded node."""
        return {node_id: dict(rec.outputs) for node_id, rec in self.records.items()}

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        atomic_write_json(path, self.model_dump(mode="json"))
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for %s", path)
        return cls()


def atomic_write_json(path: Path, data: Any) -> None:
    """Write *data* as JSON via temp file + fsync + rename."""
    content = json.dumps(data, indent=2, sort_keys=True) + "\n"
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_file = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_file.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_file.unlink()


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Fields that should not force a re-plan
    (e.g., `created_at`/`last_applied_at`) are left out.
    """
    records = []
    for node_id, rec in sorted(state.records.items(), key=lambda kv: kv[0]):
        records.append(
            {
                "node_id": node_id,
                "resource_type": rec.resource_type,
                "config_hash": rec.config_hash,
                "outputs": rec.outputs,
                "dependencies": sorted(rec.dependencies),
            }
        )

    digestable = {
        "version": state.version,
        "lineage": state.lineage,
        "serial": state.serial,
        "records": records,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StateStore:
    """Single source of truth for applied state.

    Reads return snapshots.  Writes are per-node read-modify-write cycles
    serialized by an in-process lock; each one bumps the serial and persists.
    Apply sessions additionally hold an exclusive file lock (see
    :meth:`session`).
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._mutex = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> State:
        """Return a snapshot of the persisted state."""
        with self._mutex:
            return State.load_or_create(self._path)

    @contextlib.contextmanager
    def session(self) -> Iterator["StateStore"]:
        """Hold the exclusive session lock; fails fast if already held."""
        from infra_provisioner.engine.lock import StateLock

        with StateLock(self._path):
            yield self

    def initialize(self, lineage: str) -> None:
        """Write an empty state with *lineage* unless one already exists."""
        with self._mutex:
            if not self._path.exists():
                State(lineage=lineage).save(self._path)

    def _mutate(self, fn: Callable[[State], Any]) -> State:
        with self._mutex:
            state = State.load_or_create(self._path)
            fn(state)
            state.serial += 1
            state.save(self._path)
            return state

    def put_record(self, record: StateRecord) -> None:
        """Create or replace the record for ``record.node_id``."""

        def _put(state: State) -> None:
            prior = state.records.get(record.node_id)
            if prior is not None:
                record.created_at = prior.created_at
            state.records[record.node_id] = record

        self._mutate(_put)
        logger.debug("Recorded %s", record.node_id)

    def remove_record(self, node_id: str) -> None:
        """Drop the record for *node_id* (after a successful destroy)."""
        self._mutate(lambda state: state.records.pop(node_id, None))
        logger.debug("Removed record %s", node_id)

    def set_outputs(self, outputs: Mapping[str, Any]) -> None:
        """Replace the exported output values."""

        def _set(state: State) -> None:
            state.outputs = dict(outputs)

        self._mutate(_set)
