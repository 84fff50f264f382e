"""Credential generation."""

from __future__ import annotations

import secrets
import string

DEFAULT_PASSWORD_LENGTH = 32
# Characters that break connection strings and shell quoting.
DEFAULT_EXCLUDED_CHARACTERS = "/@\"' \\"


def generate_password(
    length: int = DEFAULT_PASSWORD_LENGTH,
    exclude_characters: str = DEFAULT_EXCLUDED_CHARACTERS,
) -> str:
    """Return a cryptographically random password.

    The result always mixes lowercase, uppercase, digits and punctuation.
    """
    if length < 4:
        raise ValueError("Password length must be at least 4")

    classes = [
        "".join(c for c in chars if c not in exclude_characters)
        for chars in (
            string.ascii_lowercase,
            string.ascii_uppercase,
            string.digits,
            string.punctuation,
        )
    ]
    classes = [chars for chars in classes if chars]
    alphabet = "".join(classes)

    chars = [secrets.choice(group) for group in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
