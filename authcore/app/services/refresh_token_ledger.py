"""
services/refresh_token_ledger.py — Refresh token lifecycle.

Token design:
  - Cryptographically random hex string (256 bits), stored in the DB as a
    SHA-256 hash. The raw value is returned to the client once.
  - Single active token per user: issue() revokes every earlier token of the
    user before inserting the new one ("rotate on issue").
  - Rotation on use: rotate() claims the presented token with a conditional
    UPDATE (... WHERE revoked = false). Of two requests racing with the same
    token exactly one claims the row; the other sees rowcount 0 and fails
    with RefreshTokenRevoked without issuing anything.

verify() reports three distinct failure kinds for logs and tests. They all
subclass RefreshTokenError, and the orchestrator collapses them into a
single REFRESH_TOKEN_INVALID so clients cannot probe which case occurred.

Layer rules: no commits (flush only), no Flask imports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from authcore.app.clock import utcnow
from authcore.app.models.refresh_token import RefreshToken
from authcore.app.models.user import User
from authcore.app.security.opaque import generate_token, hash_token

logger = logging.getLogger(__name__)


class RefreshTokenError(Exception):
    """Base class for refresh token verification failures."""


class RefreshTokenNotFound(RefreshTokenError):
    pass


class RefreshTokenExpired(RefreshTokenError):
    pass


class RefreshTokenRevoked(RefreshTokenError):
    pass


@dataclass(frozen=True)
class IssuedRefreshToken:
    raw: str
    record: RefreshToken


class RefreshTokenLedger:

    def __init__(self, session: Session, ttl: timedelta) -> None:
        self.session = session
        self.ttl = ttl

    def issue(self, user: User, now: datetime | None = None) -> IssuedRefreshToken:
        """Revokes all live tokens of `user`, then mints a fresh one."""
        now = now or utcnow()
        self.revoke_all(user.id)

        raw_token = generate_token()
        record = RefreshToken(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            expires_at=now + self.ttl,
            revoked=False,
        )
        self.session.add(record)
        # flush so the row exists before we return; commit is the caller's job
        self.session.flush()

        return IssuedRefreshToken(raw=raw_token, record=record)

    def find(self, raw_token: str) -> RefreshToken | None:
        return self.session.execute(
            select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token))
        ).scalar_one_or_none()

    def verify(self, raw_token: str, now: datetime | None = None) -> RefreshToken:
        now = now or utcnow()
        record = self.find(raw_token)

        if record is None:
            raise RefreshTokenNotFound("Refresh token not found.")
        if record.revoked:
            raise RefreshTokenRevoked(f"Refresh token {record.id} has been revoked.")
        if record.is_expired(now):
            raise RefreshTokenExpired(f"Refresh token {record.id} has expired.")

        return record

    def rotate(self, record: RefreshToken, now: datetime | None = None) -> IssuedRefreshToken:
        """
        Revokes the presented token and issues its successor in the same
        transaction. If the presented token was already claimed (concurrent
        refresh, replay), raises RefreshTokenRevoked and issues nothing.
        """
        if not self._claim(record.id):
            logger.warning(
                "Refresh token %s was already revoked at rotation (user_id=%s); "
                "possible replay.",
                record.id,
                record.user_id,
            )
            raise RefreshTokenRevoked(f"Refresh token {record.id} has been revoked.")

        return self.issue(record.user, now=now)

    def revoke(self, raw_token: str) -> None:
        """Idempotent: unknown or already-revoked tokens are a no-op."""
        record = self.find(raw_token)
        if record is None:
            return
        if self._claim(record.id):
            logger.info("Refresh token revoked for user_id=%s", record.user_id)

    def revoke_all(self, user_id: int) -> int:
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
        )
        return result.rowcount

    def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result = self.session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _claim(self, record_id: int) -> bool:
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
        )
        return result.rowcount == 1
