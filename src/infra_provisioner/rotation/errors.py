"""Secret rotation error types."""

from __future__ import annotations


class RotationError(Exception):
    """Base exception for secret rotation errors."""


class UnknownSecretError(RotationError):
    """Raised when a secret is not registered for rotation."""

    def __init__(self, secret_id: str) -> None:
        super().__init__(f"Secret is not registered for rotation: {secret_id}")
        self.secret_id = secret_id


class RotationLockedError(RotationError):
    """Raised when another rotation of the same secret is in progress."""


class RotationVerificationFailure(RotationError):
    """The pending credential did not verify; rotation is parked in Testing.

    Requires operator attention: resume the rotation once the target is
    fixed, or cancel it to discard the pending version.
    """

    def __init__(self, secret_id: str, reason: str) -> None:
        super().__init__(f"Verification of pending credential for {secret_id} failed: {reason}")
        self.secret_id = secret_id
        self.reason = reason
