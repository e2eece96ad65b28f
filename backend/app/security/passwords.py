"""
security/passwords.py — bcrypt hashing.

Raw passwords are never stored and never logged.
"""

from __future__ import annotations

import bcrypt


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison; a malformed stored hash is a mismatch."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
