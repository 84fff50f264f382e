"""Staged secret rotation."""

from infra_provisioner.rotation.errors import (
    RotationError,
    RotationLockedError,
    RotationVerificationFailure,
    UnknownSecretError,
)
from infra_provisioner.rotation.generator import generate_password
from infra_provisioner.rotation.machine import RotationOutcome, SecretRotator, is_parked
from infra_provisioner.rotation.models import (
    CURRENT,
    PENDING,
    PREVIOUS,
    RotationStage,
    RotationState,
    SecretRecord,
    SecretVersion,
)
from infra_provisioner.rotation.store import SecretLock, SecretStore
from infra_provisioner.rotation.target import RotationTarget

__all__ = [
    "CURRENT",
    "PENDING",
    "PREVIOUS",
    "RotationError",
    "RotationLockedError",
    "RotationOutcome",
    "RotationStage",
    "RotationState",
    "RotationTarget",
    "RotationVerificationFailure",
    "SecretLock",
    "SecretRecord",
    "SecretRotator",
    "SecretStore",
    "SecretVersion",
    "UnknownSecretError",
    "generate_password",
    "is_parked",
]
