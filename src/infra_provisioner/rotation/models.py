"""Rotation state and secret version models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, SecretStr, field_serializer

CURRENT = "CURRENT"
PENDING = "PENDING"
PREVIOUS = "PREVIOUS"

DEFAULT_ROTATION_INTERVAL_DAYS = 30


class RotationStage(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    SETTING = "setting"
    TESTING = "testing"
    FINISHING = "finishing"


class RotationState(BaseModel):
    """Per-secret rotation record.

    Attributes:
        secret_id: Secret identifier (e.g., "trading-db-credentials")
        current_version_id: Version currently handed out to consumers
        pending_version_id: Candidate version being rotated in
        previous_version_id: Last demoted version, kept for rollback
        stage: Where the state machine stands
        last_rotated_at: When the last rotation finished
        rotation_interval_days: Scheduled rotation period
        last_error: Why the machine is parked, if it is
    """

    secret_id: str
    current_version_id: str | None = None
    pending_version_id: str | None = None
    previous_version_id: str | None = None
    stage: RotationStage = RotationStage.IDLE
    last_rotated_at: datetime | None = None
    rotation_interval_days: int = Field(default=DEFAULT_ROTATION_INTERVAL_DAYS, ge=1)
    last_error: str | None = None


class SecretVersion(BaseModel):
    version_id: str
    value: SecretStr
    labels: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_serializer("value", when_used="json")
    def _reveal_value(self, value: SecretStr) -> str:
        return value.get_secret_value()


class SecretRecord(BaseModel):
    state: RotationState
    versions: dict[str, SecretVersion] = Field(default_factory=dict)

    def labeled(self, label: str) -> SecretVersion | None:
        return next((v for v in self.versions.values() if label in v.labels), None)


class SecretStoreData(BaseModel):
    version: int = 1
    secrets: dict[str, SecretRecord] = Field(default_factory=dict)
