"""
models/proof_token.py — EmailVerificationToken and PasswordResetToken tables.

Both tables share one shape (ProofTokenMixin) but are kept separate so a
verification link can never be replayed as a reset link and vice versa.

A proof token is valid only while `now < expires_at` and `consumed` is false.
The consumed flag is exposed under its domain name on each model:
EmailVerificationToken.verified and PasswordResetToken.used.

FK policy: user_id ON DELETE CASCADE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, false, func
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship, synonym

from authcore.app.clock import ensure_utc
from authcore.app.extensions import db


class ProofTokenMixin:

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # SHA-256 hex digest of the raw token sent in the email link.
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    consumed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    consumed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    @declared_attr
    def user(cls) -> Mapped["User"]:  # noqa: F821
        return relationship("User")

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) <= now

    def is_valid(self, now: datetime) -> bool:
        return not self.consumed and not self.is_expired(now)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<{type(self).__name__} id={self.id} "
            f"user_id={self.user_id} "
            f"consumed={self.consumed}>"
        )


class EmailVerificationToken(ProofTokenMixin, db.Model):
    __tablename__ = "email_verification_tokens"

    verified = synonym("consumed")


class PasswordResetToken(ProofTokenMixin, db.Model):
    __tablename__ = "password_reset_tokens"

    used = synonym("consumed")
