"""File-backed secret store with staged versions."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import SecretStr

from infra_provisioner.core.state import atomic_write_json
from infra_provisioner.engine.lock import FileLock
from infra_provisioner.rotation.errors import RotationLockedError, UnknownSecretError
from infra_provisioner.rotation.models import (
    CURRENT,
    DEFAULT_ROTATION_INTERVAL_DAYS,
    PENDING,
    PREVIOUS,
    RotationStage,
    RotationState,
    SecretRecord,
    SecretStoreData,
    SecretVersion,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class SecretLock(FileLock):
    """Exclusive rotation lock keyed on a secret id."""

    locked_error = RotationLockedError

    def __init__(self, store_path: Path, secret_id: str) -> None:
        safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", secret_id)
        super().__init__(store_path.parent / f".{store_path.name}.{safe_id}.lock")


class SecretStore:
    """Secrets, their versions and rotation states in one JSON file.

    Every mutation is a single atomic write, so a version and the stage that
    refers to it are always persisted together.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._mutex = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> SecretStoreData:
        if not self._path.exists():
            return SecretStoreData()
        return SecretStoreData.model_validate_json(self._path.read_text(encoding="utf-8"))

    def _mutate(self, secret_id: str | None, fn: Callable[[SecretStoreData], Any]) -> Any:
        with self._mutex, FileLock(Path(str(self._path) + ".lock"), blocking=True):
            data = self._read()
            if secret_id is not None and secret_id not in data.secrets:
                raise UnknownSecretError(secret_id)
            result = fn(data)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_json(self._path, data.model_dump(mode="json"))
            return result

    def secret_ids(self) -> list[str]:
        with self._mutex:
            return list(self._read().secrets)

    def get(self, secret_id: str) -> SecretRecord:
        with self._mutex:
            record = self._read().secrets.get(secret_id)
        if record is None:
            raise UnknownSecretError(secret_id)
        return record

    def register(
        self,
        secret_id: str,
        *,
        initial_value: str | None = None,
        rotation_interval_days: int = DEFAULT_ROTATION_INTERVAL_DAYS,
    ) -> RotationState:
        """Register *secret_id* for rotation; an existing registration is kept."""

        def _register(data: SecretStoreData) -> RotationState:
            existing = data.secrets.get(secret_id)
            if existing is not None:
                existing.state.rotation_interval_days = rotation_interval_days
                return existing.state

            record = SecretRecord(
                state=RotationState(
                    secret_id=secret_id, rotation_interval_days=rotation_interval_days
                )
            )
            if initial_value is not None:
                version = _new_version(initial_value, CURRENT)
                record.versions[version.version_id] = version
                record.state.current_version_id = version.version_id
            data.secrets[secret_id] = record
            logger.info("Registered secret %s for rotation", secret_id)
            return record.state

        return self._mutate(None, _register)

    def put_state(self, state: RotationState) -> RotationState:
        """Persist a stage transition."""

        def _put(data: SecretStoreData) -> RotationState:
            data.secrets[state.secret_id].state = state
            return state

        self._mutate(state.secret_id, _put)
        logger.debug("Rotation %s -> %s", state.secret_id, state.stage.value)
        return state

    def stage_pending(
        self, secret_id: str, generate: Callable[[], str]
    ) -> tuple[RotationState, SecretVersion]:
        """Stage a pending version and advance to Setting.

        A pending version left by an interrupted run is reused; *generate* is
        only called when there is none.
        """

        def _stage(data: SecretStoreData) -> tuple[RotationState, SecretVersion]:
            record = data.secrets[secret_id]
            version = record.labeled(PENDING)
            if version is None:
                version = _new_version(generate(), PENDING)
                record.versions[version.version_id] = version
            record.state.pending_version_id = version.version_id
            record.state.stage = RotationStage.SETTING
            return record.state, version

        return self._mutate(secret_id, _stage)

    def promote(self, secret_id: str, *, now: datetime | None = None) -> RotationState:
        """Pending becomes current, current becomes previous, back to Idle."""

        def _promote(data: SecretStoreData) -> RotationState:
            record = data.secrets[secret_id]
            state = record.state
            pending = record.labeled(PENDING)
            if pending is not None:
                current = record.labeled(CURRENT)
                previous = record.labeled(PREVIOUS)
                if previous is not None:
                    del record.versions[previous.version_id]
                if current is not None:
                    current.labels = [PREVIOUS]
                pending.labels = [CURRENT]
                state.previous_version_id = current.version_id if current else None
                state.current_version_id = pending.version_id
                state.last_rotated_at = now or datetime.now(UTC)
            state.pending_version_id = None
            state.stage = RotationStage.IDLE
            state.last_error = None
            return state

        return self._mutate(secret_id, _promote)

    def discard_pending(self, secret_id: str) -> RotationState:
        """Drop the pending version and return to Idle; current is untouched."""

        def _discard(data: SecretStoreData) -> RotationState:
            record = data.secrets[secret_id]
            pending = record.labeled(PENDING)
            if pending is not None:
                del record.versions[pending.version_id]
            record.state.pending_version_id = None
            record.state.stage = RotationStage.IDLE
            record.state.last_error = None
            return record.state

        return self._mutate(secret_id, _discard)

    def value(self, secret_id: str, label: str = CURRENT) -> str | None:
        """Secret value of the version carrying *label*."""
        version = self.get(secret_id).labeled(label)
        return version.value.get_secret_value() if version is not None else None

    def current_value(self, secret_id: str) -> str | None:
        return self.value(secret_id, CURRENT)


def _new_version(value: str, label: str) -> SecretVersion:
    return SecretVersion(version_id=str(uuid.uuid4()), value=SecretStr(value), labels=[label])
