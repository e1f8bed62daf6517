"""
Password hashing helpers.
"""

from __future__ import annotations

import bcrypt

from conduit.config import get_settings

# bcrypt only accepts this many bytes of input
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int | None = None) -> str:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(
            f"Password is {len(encoded)} bytes; at most {MAX_PASSWORD_BYTES} are allowed"
        )
    if rounds is None:
        rounds = get_settings().bcrypt_rounds
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(password: str, password_digest: str | None) -> bool:
    """Check ``password`` against a bcrypt digest; malformed digests never match."""
    if not password_digest:
        return False
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_digest.encode("utf-8"))
    except ValueError:
        return False
