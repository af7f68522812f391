"""
security/passwords.py — bcrypt password hashing.

Raw passwords are never stored and never logged. bcrypt only looks at the
first 72 bytes of input; signup and reset reject anything longer so two
different long passwords can never share a hash. At login an over-long
password simply never matches.
"""

from __future__ import annotations

import functools

import bcrypt

MAX_PASSWORD_BYTES = 72


@functools.lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> bytes:
    # Checked when the user does not exist so "unknown email" and
    # "wrong password" cost the same bcrypt work.
    return bcrypt.hashpw(b"dummy-password-for-timing", bcrypt.gensalt(rounds=rounds))


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def check_password(password: str, password_hash: str | None, rounds: int = 12) -> bool:
    """
    Constant-time comparison of `password` against a stored bcrypt hash.

    A missing hash (social-only account) or an unknown user still costs one
    bcrypt check at `rounds` so response time does not reveal which case
    occurred. Passwords longer than MAX_PASSWORD_BYTES are checked on their
    truncated prefix, for the same cost, and always fail.
    """
    candidate = password.encode("utf-8")
    too_long = len(candidate) > MAX_PASSWORD_BYTES
    candidate = candidate[:MAX_PASSWORD_BYTES]

    if not password_hash:
        bcrypt.checkpw(candidate, _dummy_hash(rounds))
        return False
    try:
        matched = bcrypt.checkpw(candidate, password_hash.encode("utf-8"))
    except ValueError:
        # Corrupt hash in the store.
        return False
    return matched and not too_long
