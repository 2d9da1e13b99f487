"""
auth/passwords.py -- bcrypt password hashing.

Bcrypt is used directly (no passlib wrapper). Each hash carries its own random
salt and cost factor, so verification always runs at the cost the hash was
created with and rounds can be raised later without invalidating old hashes.

bcrypt.checkpw compares digests in constant time.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt (a known bcrypt
    limitation). The API layer caps password length at 72 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization. Computed once at import so the first login attempt is
# not measurably slower than later ones. The verifier runs a comparison
# against this hash whenever it rejects without reaching the real hash, so
# response time does not reveal whether a username exists.
_DUMMY_HASH: str = hash_password("keyward_timing_dummy")


def burn_verification(plain: str) -> None:
    verify_password(plain, _DUMMY_HASH)
