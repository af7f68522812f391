"""
models/user.py — User and Role table definitions.

No business logic beyond read-only helpers. No imports from services or routes.

Roles are reference data seeded out-of-band (see `flask seed-roles`); the
auth core only ever reads them.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.app.extensions import db


ROLE_USER      = "ROLE_USER"
ROLE_ADMIN     = "ROLE_ADMIN"
ROLE_MODERATOR = "ROLE_MODERATOR"

DEFAULT_ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_MODERATOR)


class UserStatus(str, enum.Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE               = "ACTIVE"
    LOCKED               = "LOCKED"
    DISABLED             = "DISABLED"
    DELETED              = "DELETED"


class AuthProvider(str, enum.Enum):
    LOCAL    = "LOCAL"
    GOOGLE   = "GOOGLE"
    GITHUB   = "GITHUB"
    FACEBOOK = "FACEBOOK"


# Many-to-many association. Both FKs CASCADE: the link row has no meaning
# without either side.
user_roles = Table(
    "user_roles",
    db.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(db.Model):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Role id={self.id} name={self.name!r}>"


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        # One local record per external identity. NULL provider_id values
        # (local accounts) do not collide.
        UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Stored lower-cased; the credential store normalises before every
    # read and write so the UNIQUE constraint is effectively case-insensitive.
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    # NULL for accounts that only ever signed in through a social provider.
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, native_enum=False, length=32, name="user_status"),
        nullable=False,
        default=UserStatus.PENDING_VERIFICATION,
    )

    provider: Mapped[AuthProvider] = mapped_column(
        Enum(AuthProvider, native_enum=False, length=20, name="auth_provider"),
        nullable=False,
        default=AuthProvider.LOCAL,
    )

    provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Avatar URL reported by the social provider on the most recent login.
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    roles: Mapped[set["Role"]] = relationship(
        "Role",
        secondary=user_roles,
        lazy="selectin",
    )

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # ── Read-only helpers ──────────────────────────────────────────────────

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(sorted(role.name for role in self.roles))

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.email

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} status={self.status.value}>"
