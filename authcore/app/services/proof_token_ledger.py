"""
services/proof_token_ledger.py — Single-use, time-boxed proof tokens.

One ledger class serves both token tables; the orchestrator builds one
instance per model:

    ProofTokenLedger(session, EmailVerificationToken)
    ProofTokenLedger(session, PasswordResetToken)

create() does NOT remove earlier tokens. Callers that need a single live
token per user (password reset) call delete_all() first.

consume() claims the row with a conditional UPDATE (... WHERE consumed =
false), so two racing consumers of the same token get exactly one success;
the loser raises ProofTokenExpiredOrConsumed.

Layer rules: no commits (flush only), no Flask imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from authcore.app.clock import utcnow
from authcore.app.models.proof_token import ProofTokenMixin
from authcore.app.models.user import User
from authcore.app.security.opaque import generate_token, hash_token

T = TypeVar("T", bound=ProofTokenMixin)


class ProofTokenError(Exception):
    """Base class for proof token lookup/consumption failures."""


class ProofTokenNotFound(ProofTokenError):
    pass


class ProofTokenExpiredOrConsumed(ProofTokenError):
    pass


@dataclass(frozen=True)
class IssuedProofToken(Generic[T]):
    raw: str
    record: T


class ProofTokenLedger(Generic[T]):

    def __init__(self, session: Session, model: type[T]) -> None:
        self.session = session
        self.model = model

    def create(self, user: User, ttl_hours: int, now: datetime | None = None) -> IssuedProofToken[T]:
        now = now or utcnow()
        raw_token = generate_token()
        record = self.model(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            expires_at=now + timedelta(hours=ttl_hours),
            consumed=False,
        )
        self.session.add(record)
        self.session.flush()
        return IssuedProofToken(raw=raw_token, record=record)

    def find_valid(self, raw_token: str, now: datetime | None = None) -> T:
        now = now or utcnow()
        record = self.session.execute(
            select(self.model).where(self.model.token_hash == hash_token(raw_token))
        ).scalar_one_or_none()

        if record is None:
            raise ProofTokenNotFound(f"{self.model.__name__} not found.")
        if not record.is_valid(now):
            raise ProofTokenExpiredOrConsumed(
                f"{self.model.__name__} {record.id} has expired or was already used."
            )
        return record

    def consume(self, record: T, now: datetime | None = None) -> None:
        now = now or utcnow()
        result = self.session.execute(
            update(self.model)
            .where(self.model.id == record.id, self.model.consumed.is_(False))
            .values(consumed=True, consumed_at=now)
        )
        if result.rowcount != 1:
            raise ProofTokenExpiredOrConsumed(
                f"{self.model.__name__} {record.id} was already used."
            )

    def delete_all(self, user_id: int) -> int:
        result = self.session.execute(
            delete(self.model)
            .where(self.model.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result = self.session.execute(
            delete(self.model)
            .where(self.model.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
