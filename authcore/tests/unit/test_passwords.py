"""
tests/unit/test_passwords.py — bcrypt hashing and checking at the 72-byte limit.
"""

from __future__ import annotations

from authcore.app.security.passwords import MAX_PASSWORD_BYTES, check_password, hash_password

ROUNDS = 4


def test_matching_password_is_accepted():
    stored = hash_password("Password1", rounds=ROUNDS)
    assert check_password("Password1", stored, rounds=ROUNDS)


def test_wrong_password_is_rejected():
    stored = hash_password("Password1", rounds=ROUNDS)
    assert not check_password("Password2", stored, rounds=ROUNDS)


def test_password_at_byte_limit_is_accepted():
    password = "a1" * (MAX_PASSWORD_BYTES // 2)
    stored = hash_password(password, rounds=ROUNDS)
    assert check_password(password, stored, rounds=ROUNDS)


def test_over_long_password_sharing_the_stored_prefix_is_rejected():
    stored = hash_password("a1" * 36, rounds=ROUNDS)
    assert not check_password("a1" * 40, stored, rounds=ROUNDS)


def test_over_long_password_without_stored_hash_is_rejected():
    assert not check_password("a1" * 40, None, rounds=ROUNDS)


def test_missing_hash_is_rejected():
    assert not check_password("Password1", None, rounds=ROUNDS)
    assert not check_password("Password1", "", rounds=ROUNDS)


def test_corrupt_stored_hash_is_rejected():
    assert not check_password("Password1", "not-a-bcrypt-hash", rounds=ROUNDS)
