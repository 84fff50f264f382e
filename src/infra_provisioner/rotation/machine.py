"""Staged secret rotation.

A rotation walks ``idle -> creating -> setting -> testing -> finishing ->
idle``.  Each stage is persisted before its side effect runs, so a rotation
interrupted at any point resumes from the last durable stage:

- creating stages a random candidate as the PENDING version (reused if one
  already exists),
- setting makes the candidate valid on the target next to the current one,
- testing verifies the candidate; a failure parks the secret in ``testing``
  until an operator resumes or cancels it,
- finishing swaps labels: PENDING becomes CURRENT, CURRENT becomes PREVIOUS.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from infra_provisioner.core.retry import RetryPolicy, call_with_retry
from infra_provisioner.rotation.errors import (
    RotationError,
    RotationLockedError,
    RotationVerificationFailure,
)
from infra_provisioner.rotation.generator import generate_password
from infra_provisioner.rotation.models import PENDING, RotationStage, RotationState
from infra_provisioner.rotation.store import SecretLock

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from infra_provisioner.rotation.store import SecretStore
    from infra_provisioner.rotation.target import RotationTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotationOutcome:
    secret_id: str
    status: str  # "rotated", "skipped" or "failed"
    stage: RotationStage
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_parked(state: RotationState) -> bool:
    """Whether *state* is halted after a failed verification."""
    return state.stage is RotationStage.TESTING and state.last_error is not None


class SecretRotator:
    """Drives rotations for the secrets registered in a :class:`SecretStore`."""

    def __init__(
        self,
        store: SecretStore,
        targets: Mapping[str, RotationTarget],
        *,
        policy: RetryPolicy | None = None,
        generator: Callable[[], str] = generate_password,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._targets = dict(targets)
        self._policy = policy or RetryPolicy()
        self._generator = generator
        self._clock = clock
        self._sleep = sleep

    @property
    def store(self) -> SecretStore:
        return self._store

    def is_due(self, state: RotationState, now: datetime | None = None) -> bool:
        """An idle secret is due once its interval has elapsed; in-flight ones always are."""
        if state.stage is not RotationStage.IDLE:
            return True
        if state.last_rotated_at is None:
            return True
        now = now or self._clock()
        return now - state.last_rotated_at >= timedelta(days=state.rotation_interval_days)

    def _target(self, secret_id: str) -> RotationTarget:
        try:
            return self._targets[secret_id]
        except KeyError:
            raise RotationError(f"No rotation target configured for secret: {secret_id}") from None

    def _pending_value(self, secret_id: str) -> str:
        value = self._store.value(secret_id, PENDING)
        if value is None:
            raise RotationError(f"Secret {secret_id} has no pending version")
        return value

    def rotate(self, secret_id: str, *, force: bool = False, resume: bool = False) -> RotationState:
        """Run (or resume) the rotation of *secret_id* to completion.

        Args:
            secret_id: Registered secret to rotate.
            force: Rotate an idle secret even if its interval has not elapsed.
            resume: Re-verify a secret parked in ``testing``.

        Raises:
            RotationLockedError: Another rotation of this secret is running.
            RotationVerificationFailure: The candidate did not verify, or the
                secret is parked and *resume* was not given.
            RotationError: The target rejected the candidate while setting it.
        """
        target = self._target(secret_id)

        with SecretLock(self._store.path, secret_id):
            state = self._store.get(secret_id).state

            if is_parked(state) and not resume:
                raise RotationVerificationFailure(secret_id, state.last_error or "unknown")

            if state.stage is RotationStage.IDLE:
                if not force and not self.is_due(state):
                    logger.debug("Secret %s is not due for rotation", secret_id)
                    return state
                logger.info("Rotating secret %s", secret_id)
                state.stage = RotationStage.CREATING
                state = self._store.put_state(state)
            else:
                logger.info("Resuming rotation of %s from %s", secret_id, state.stage.value)

            if state.stage is RotationStage.CREATING:
                state, _ = self._store.stage_pending(secret_id, self._generator)

            if state.stage is RotationStage.SETTING:
                state = self._set(secret_id, target, state)

            if state.stage is RotationStage.TESTING:
                state = self._test(secret_id, target, state)

            if state.stage is RotationStage.FINISHING:
                state = self._store.promote(secret_id, now=self._clock())
                logger.info(
                    "Rotated secret %s: current version %s",
                    secret_id,
                    state.current_version_id,
                )

            return state

    def _set(self, secret_id: str, target: RotationTarget, state: RotationState) -> RotationState:
        value = self._pending_value(secret_id)
        try:
            call_with_retry(
                lambda: target.set_credential(value),
                self._policy,
                label=f"set_credential({secret_id})",
                sleep=self._sleep,
            )
        except Exception as e:
            state.last_error = str(e) or type(e).__name__
            self._store.put_state(state)
            raise RotationError(f"Setting pending credential for {secret_id} failed: {e}") from e

        state.stage = RotationStage.TESTING
        state.last_error = None
        return self._store.put_state(state)

    def _test(self, secret_id: str, target: RotationTarget, state: RotationState) -> RotationState:
        value = self._pending_value(secret_id)
        try:
            ok = call_with_retry(
                lambda: target.verify_credential(value),
                self._policy,
                label=f"verify_credential({secret_id})",
                sleep=self._sleep,
            )
        except Exception as e:
            reason = str(e) or type(e).__name__
        else:
            reason = None if ok else "pending credential was rejected by the target"

        if reason is not None:
            state.last_error = reason
            self._store.put_state(state)
            logger.error("Rotation of %s halted in testing: %s", secret_id, reason)
            raise RotationVerificationFailure(secret_id, reason)

        state.stage = RotationStage.FINISHING
        state.last_error = None
        return self._store.put_state(state)

    def rotate_due(self, now: datetime | None = None) -> list[RotationOutcome]:
        """Rotate every registered secret that is due at *now*.

        Parked and locked secrets are skipped; a failure on one secret does
        not stop the others.
        """
        now = now or self._clock()
        outcomes: list[RotationOutcome] = []

        for secret_id in self._store.secret_ids():
            state = self._store.get(secret_id).state
            if is_parked(state):
                logger.warning("Skipping %s: parked in testing (%s)", secret_id, state.last_error)
                outcomes.append(
                    RotationOutcome(secret_id, "skipped", state.stage, state.last_error)
                )
                continue
            if not self.is_due(state, now):
                continue

            try:
                state = self.rotate(secret_id, force=True)
            except RotationLockedError as e:
                logger.warning("Skipping %s: %s", secret_id, e)
                outcomes.append(RotationOutcome(secret_id, "skipped", state.stage, str(e)))
            except RotationError as e:
                current = self._store.get(secret_id).state
                outcomes.append(RotationOutcome(secret_id, "failed", current.stage, str(e)))
            else:
                outcomes.append(RotationOutcome(secret_id, "rotated", state.stage))

        return outcomes

    def cancel(self, secret_id: str) -> RotationState:
        """Discard the pending version and return *secret_id* to idle.

        The current credential is untouched.  A candidate already set on the
        target stays valid there until the next rotation overwrites it.
        """
        with SecretLock(self._store.path, secret_id):
            state = self._store.discard_pending(secret_id)
        logger.warning("Canceled rotation of %s", secret_id)
        return state
