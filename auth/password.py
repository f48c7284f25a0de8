"""
bcrypt password hashes.

The work factor comes from ``BCRYPT_ROUNDS``; hashes made with a lower
factor are upgraded on the next successful login.
"""

from __future__ import annotations

import bcrypt

from config.settings import config


def hash_password(password: str, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or config.bcrypt_rounds)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except (ValueError, TypeError):
        # not a bcrypt hash
        return False


def needs_rehash(password_hash: str, rounds: int | None = None) -> bool:
    """True when *password_hash* was made with fewer rounds than configured."""
    try:
        cost = int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return True
    return cost < (rounds or config.bcrypt_rounds)
