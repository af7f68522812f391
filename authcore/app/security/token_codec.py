"""
security/token_codec.py — Stateless signing and verification of access tokens.

Access token design:
  - JWT, HS256 (configurable HMAC algorithm), signed with JWT_SECRET_KEY.
  - Claims: sub (user id as str), email, roles (comma-joined), iat, exp, jti.
  - exp = iat + access TTL.

verify() distinguishes four failure kinds so callers and tests can tell them
apart; the route layer decides how much of that reaches the client:

  TokenSignatureInvalid — signed with a different key / tampered payload
  TokenMalformed        — not a JWT, bad segments, missing/invalid claims
  TokenExpired          — exp claim in the past
  TokenUnsupported      — header names an algorithm this codec does not accept

No I/O. The secret is threaded in at construction time; nothing here reads
Flask config or environment variables.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping

import jwt

from authcore.app.clock import utcnow


class TokenError(Exception):
    """Base class for access-token verification failures."""


class TokenSignatureInvalid(TokenError):
    pass


class TokenMalformed(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class TokenUnsupported(TokenError):
    pass


@dataclass(frozen=True)
class AuthenticatedSubject:
    """The identity carried by an access token."""

    id: int
    email: str
    roles: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user) -> "AuthenticatedSubject":
        return cls(id=user.id, email=user.email, roles=user.role_names)


_REQUIRED_CLAIMS = ["sub", "exp", "iat"]


class TokenCodec:

    def __init__(
            self,
            secret: str,
            *,
            ttl: timedelta,
            algorithm: str = "HS256",
    ) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty signing secret.")
        if not algorithm.startswith("HS"):
            raise ValueError(f"Only HMAC algorithms are supported, got {algorithm!r}.")
        self._key = secret.encode("utf-8")
        self._algorithm = algorithm
        self.ttl = ttl

    @classmethod
    def from_config(cls, config: Mapping) -> "TokenCodec":
        return cls(
            config["JWT_SECRET_KEY"],
            ttl=config["JWT_ACCESS_TOKEN_EXPIRES"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
        )

    @property
    def expires_in_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def sign(self, subject: AuthenticatedSubject, now: datetime | None = None) -> str:
        issued_at = now or utcnow()
        payload = {
            "sub": str(subject.id),
            "email": subject.email,
            "roles": ",".join(subject.roles),
            "iat": issued_at,
            "exp": issued_at + self.ttl,
            # Guarantees each issued token is unique even if generated in the same second.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._key, algorithm=self._algorithm)

    def verify(self, token: str) -> AuthenticatedSubject:
        if not token:
            raise TokenMalformed("Token is empty.")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as exc:
            raise TokenMalformed(str(exc)) from exc

        if header.get("alg") != self._algorithm:
            raise TokenUnsupported(f"Unsupported token algorithm: {header.get('alg')!r}.")

        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("Token has expired.") from exc
        except jwt.InvalidSignatureError as exc:
            # Must precede DecodeError: InvalidSignatureError subclasses it.
            raise TokenSignatureInvalid("Token signature does not match.") from exc
        except jwt.InvalidAlgorithmError as exc:
            raise TokenUnsupported(str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise TokenMalformed(str(exc)) from exc

        return _subject_from_claims(payload)


def _subject_from_claims(payload: dict) -> AuthenticatedSubject:
    try:
        subject_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise TokenMalformed("The 'sub' claim is not a valid user id.") from exc

    email = payload.get("email")
    if not isinstance(email, str) or not email:
        raise TokenMalformed("The 'email' claim is missing.")

    return AuthenticatedSubject(
        id=subject_id,
        email=email,
        roles=_split_roles(payload.get("roles", "")),
    )


def _split_roles(raw: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(raw, str):
        return tuple(r for r in raw.split(",") if r)
    return tuple(raw)
