"""
services/credential_store.py — Keyed persistence for User and Role rows.

The only module that queries the users and roles tables. Emails are
normalised (trimmed, lower-cased) on every read and write, so lookups are
case-insensitive while the UNIQUE constraint on users.email stays the
storage-level backstop against duplicates.

Layer rules:
  - No imports from routes or schemas.
  - No commits. save() flushes; the caller owns the transaction.
"""

from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.app.models.user import DEFAULT_ROLES, Role, User


class DuplicateEmail(Exception):
    """Raised when the store's UNIQUE(email) constraint rejects a write."""


class DuplicateProviderIdentity(Exception):
    """Raised when UNIQUE(provider, provider_id) rejects a write."""

    def __init__(self, provider: str, provider_id: str | None) -> None:
        super().__init__(f"{provider} identity {provider_id!r} already belongs to another user")
        self.provider = provider
        self.provider_id = provider_id


class RoleNotSeeded(RuntimeError):
    """Raised when a required role row is missing from the reference data."""


# How each backend names the violated constraint in its error message:
# PostgreSQL by constraint name, SQLite by table.column.
_EMAIL_CONSTRAINT = ("users_email_key", "users.email")
_PROVIDER_IDENTITY_CONSTRAINT = ("uq_users_provider_identity", "users.provider_id")


def _names_any(message: str, markers: tuple[str, ...]) -> bool:
    return any(marker in message for marker in markers)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_email(self, email: str) -> User | None:
        return self.session.execute(
            select(User).where(User.email == normalize_email(email))
        ).scalar_one_or_none()

    def exists_by_email(self, email: str) -> bool:
        return bool(self.session.execute(
            select(exists().where(User.email == normalize_email(email)))
        ).scalar())

    def find_by_id(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def save(self, user: User) -> User:
        """
        Adds or updates `user` and flushes so that user.id is populated.

        Raises DuplicateEmail if a concurrent writer claimed the same email
        between the caller's existence check and this flush, and
        DuplicateProviderIdentity if another user already holds the same
        (provider, provider_id). Any other integrity failure propagates.
        """
        user.email = normalize_email(user.email)
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            violation = str(exc.orig)
            if _names_any(violation, _PROVIDER_IDENTITY_CONSTRAINT):
                raise DuplicateProviderIdentity(user.provider.value, user.provider_id) from exc
            if _names_any(violation, _EMAIL_CONSTRAINT):
                raise DuplicateEmail(user.email) from exc
            raise
        return user

    def get_role(self, name: str) -> Role:
        role = self.session.execute(
            select(Role).where(Role.name == name)
        ).scalar_one_or_none()
        if role is None:
            raise RoleNotSeeded(
                f"Role {name!r} not found. Seed reference data with `flask seed-roles`."
            )
        return role


def seed_roles(session: Session, names: tuple[str, ...] = DEFAULT_ROLES) -> int:
    """
    Inserts any missing role rows. Out-of-band reference-data tool; the auth
    flows never call it. Returns the number of roles created.
    """
    existing = set(session.execute(select(Role.name)).scalars())
    created = 0
    for name in names:
        if name not in existing:
            session.add(Role(name=name))
            created += 1
    session.flush()
    return created
