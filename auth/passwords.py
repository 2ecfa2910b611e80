"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The _DUMMY_HASH constant enables timing equalization in SessionManager.login()
so response time does not reveal whether an account exists [C1].

Layer rule: stdlib + bcrypt only.
"""

from __future__ import annotations

import bcrypt


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes. The API layer caps password length
    (Pydantic max_length) well below the point where that matters in practice.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A corrupt or non-bcrypt hash is a mismatch, not a crash.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("sessiongate_timing_dummy")


def burn_dummy_check(plain: str) -> None:
    """Run one bcrypt comparison against a throwaway hash [C1].

    Call on the unknown-account path so it costs the same as a real check.
    """
    verify_password(plain, _DUMMY_HASH)
