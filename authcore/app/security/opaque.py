"""
security/opaque.py — Opaque random tokens and their storage digests.

Refresh tokens and proof tokens are random strings handed to the client once.
Only their SHA-256 digest is persisted; lookups hash the presented value.
"""

from __future__ import annotations

import hashlib
import secrets

# 32 random bytes → 256 bits of entropy, 64 hex characters.
_TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_hex(_TOKEN_BYTES)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def redact_email(email: str | None) -> str:
    """Redacts an email address for log lines: 'alice@x.com' → 'al***@x.com'."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
