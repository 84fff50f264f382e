"""Rotation target capability."""

from __future__ import annotations


class RotationTarget:
    """System whose credential is rotated (e.g., a database user).

    Raise ``ProviderTransientError`` for failures worth retrying; anything
    else stops the rotation at its current stage.
    """

    def set_credential(self, value: str) -> None:
        """Make *value* valid alongside the current credential."""
        raise NotImplementedError

    def verify_credential(self, value: str) -> bool:
        """Return whether *value* authenticates against the target."""
        raise NotImplementedError
