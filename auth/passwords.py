"""
auth/passwords.py -- Password hashing (bcrypt, direct usage, no passlib wrapper).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt refuses input longer than MAX_PASSWORD_BYTES (72) once UTF-8 encoded.
Callers check the encoded length first; a 72-character limit is not enough
because non-ASCII characters take more than one byte.
"""

from __future__ import annotations

import bcrypt

MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext matches the hash.

    A missing or malformed stored hash is a failed verification, not an error
    that aborts the caller.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. Login always runs one bcrypt check, against
# this hash when the email is unknown, so response time does not reveal
# whether an account exists.
DUMMY_HASH: str = hash_password("sessiongate_timing_dummy")
