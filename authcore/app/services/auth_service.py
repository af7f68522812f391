"""
services/auth_service.py — Session orchestration.

AuthService coordinates the credential store, the token codec, the refresh
token ledger and the two proof token ledgers to implement signup, login,
OAuth2 token exchange, refresh, logout, email verification and password
reset.

Layer rules:
  - No imports from routes or schemas.
  - No use of flask.request, flask.g or current_app. Configuration, the codec
    and the notifier are passed in by the route layer.
  - No commits. Every mutation of one operation is flushed into the caller's
    session; the route commits once, so an operation either lands completely
    or not at all.

Error policy:
  - Lower-layer failures (ledger/codec exceptions) are mapped to AppError
    with the original exception chained on __cause__ and logged. Clients
    never learn whether a token was unknown, expired or revoked.
  - SQLAlchemyError is never mapped to a specific kind. It surfaces as
    INFRASTRUCTURE_ERROR (503).
  - Notification sends are best-effort: a failure is logged and dropped.

Password storage:
  - bcrypt, cost factor from AuthSettings.bcrypt_rounds (default 12)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.app.errors import AppError, ErrorCode
from authcore.app.models.proof_token import EmailVerificationToken, PasswordResetToken
from authcore.app.models.user import ROLE_USER, AuthProvider, User, UserStatus
from authcore.app.security.opaque import redact_email
from authcore.app.security.passwords import check_password, hash_password
from authcore.app.security.token_codec import AuthenticatedSubject, TokenCodec, TokenError
from authcore.app.services.credential_store import (
    CredentialStore,
    DuplicateEmail,
    normalize_email,
)
from authcore.app.services.identity_resolution import social_provider
from authcore.app.services.login_throttle import LoginThrottle
from authcore.app.services.notification_dispatcher import Notifier, Recipient
from authcore.app.services.proof_token_ledger import ProofTokenError, ProofTokenLedger
from authcore.app.services.refresh_token_ledger import (
    IssuedRefreshToken,
    RefreshTokenError,
    RefreshTokenLedger,
)
from authcore.config import AuthSettings

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"


def _infrastructure_boundary(method: Callable) -> Callable:
    """Turns store failures into INFRASTRUCTURE_ERROR; AppError passes through."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", method.__name__)
            raise AppError(
                ErrorCode.INFRASTRUCTURE_ERROR,
                "The service is temporarily unavailable. Please try again later.",
                503,
            ) from exc

    return wrapper


class AuthService:
    """
    One instance per unit of work (request). Holds no state beyond the
    session and its collaborators.
    """

    def __init__(
            self,
            session: Session,
            settings: AuthSettings,
            codec: TokenCodec,
            notifier: Notifier,
            throttle: LoginThrottle | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.codec = codec
        self.notifier = notifier
        self.throttle = throttle

        self.store = CredentialStore(session)
        self.refresh_tokens = RefreshTokenLedger(session, settings.refresh_token_ttl)
        self.verification_tokens = ProofTokenLedger(session, EmailVerificationToken)
        self.reset_tokens = ProofTokenLedger(session, PasswordResetToken)

    # ── Signup / login ─────────────────────────────────────────────────────

    @_infrastructure_boundary
    def signup(
            self,
            email: str,
            password: str,
            first_name: str,
            last_name: str,
    ) -> dict:
        """
        Creates a LOCAL user in PENDING_VERIFICATION and issues a session.

        Raises:
          AppError(EMAIL_EXISTS, 409) — email already registered
        """
        email = normalize_email(email)
        if self.store.exists_by_email(email):
            raise _email_exists(email)

        user = User(
            email=email,
            password_hash=hash_password(password, rounds=self.settings.bcrypt_rounds),
            first_name=first_name,
            last_name=last_name,
            email_verified=False,
            status=UserStatus.PENDING_VERIFICATION,
            provider=AuthProvider.LOCAL,
        )
        user.roles.add(self.store.get_role(ROLE_USER))
        try:
            self.store.save(user)
        except DuplicateEmail as exc:
            # Lost a race with a concurrent signup for the same address.
            raise _email_exists(email) from exc

        issued = self.verification_tokens.create(
            user, self.settings.email_verification_ttl_hours,
        )
        self._notify(
            self.notifier.send_verification, Recipient.from_user(user), issued.raw,
        )

        logger.info("User registered: user_id=%s email=%s", user.id, redact_email(email))
        return self._issue_session(user)

    @_infrastructure_boundary
    def login(
            self,
            email: str,
            password: str,
            ip_address: str | None = None,
            user_agent: str | None = None,
    ) -> dict:
        """
        Validates credentials and issues a new session, superseding any
        earlier refresh token of the user.

        Raises:
          AppError(TOO_MANY_ATTEMPTS, 429)   — too many recent failures
          AppError(INVALID_CREDENTIALS, 401) — unknown email or wrong password;
            the same error for both to avoid email enumeration
          AppError(ACCOUNT_DISABLED, 403) / AppError(ACCOUNT_LOCKED, 403)
        """
        email = normalize_email(email)
        if self.throttle is not None and not self.throttle.allows(email):
            logger.warning("Login throttled for %s", redact_email(email))
            raise AppError(
                ErrorCode.TOO_MANY_ATTEMPTS,
                "Too many failed login attempts. Please try again later.",
                429,
                headers={"Retry-After": str(self.throttle.retry_after_seconds(email))},
            )

        user = self.store.find_by_email(email)
        # check_password burns a bcrypt round for unknown users too.
        password_ok = check_password(
            password,
            user.password_hash if user else None,
            rounds=self.settings.bcrypt_rounds,
        )
        if user is None or not password_ok or user.status == UserStatus.DELETED:
            if self.throttle is not None:
                self.throttle.record_failure(email)
            logger.info("Failed login for %s", redact_email(email))
            raise AppError(
                ErrorCode.INVALID_CREDENTIALS,
                "The email or password is incorrect.",
                401,
            )

        _ensure_may_authenticate(user)

        if self.throttle is not None:
            self.throttle.reset(email)

        payload = self._issue_session(user)
        self._notify(
            self.notifier.send_login_alert,
            Recipient.from_user(user),
            ip_address,
            user_agent,
        )
        logger.info("User logged in: user_id=%s", user.id)
        return payload

    # ── OAuth2 exchange ────────────────────────────────────────────────────

    @_infrastructure_boundary
    def exchange_oauth2_token(self, token: str, provider: str | None = None) -> dict:
        """
        Trades the access token carried by the OAuth2 success redirect for a
        full session (access + refresh token). `provider`, when given, is the
        registration id the client signed in with; it must name a supported
        social provider.

        Raises:
          AppError(UNSUPPORTED_PROVIDER, 400)   — unknown `provider`
          AppError(TOKEN_INVALID, 401)          — token fails verification
          AppError(USER_NOT_FOUND, 404)         — subject no longer exists
          AppError(ACCOUNT_NOT_ACTIVE, 403)     — status is not ACTIVE
          AppError(OAUTH2_EXCHANGE_FAILED, 400) — anything unexpected; the
            original exception is chained as __cause__
        """
        try:
            provider_label = social_provider(provider).value if provider else "unspecified"
            try:
                subject = self.codec.verify(token)
            except TokenError as exc:
                logger.info("OAuth2 exchange rejected: %s", type(exc).__name__)
                raise AppError(
                    ErrorCode.TOKEN_INVALID,
                    "The OAuth2 token is invalid or has expired.",
                    401,
                ) from exc

            user = self.store.find_by_id(subject.id)
            if user is None:
                raise AppError(
                    ErrorCode.USER_NOT_FOUND,
                    f"User {subject.id} not found.",
                    404,
                )
            if not user.is_active:
                raise AppError(
                    ErrorCode.ACCOUNT_NOT_ACTIVE,
                    "This account is not active.",
                    403,
                )

            payload = self._issue_session(user)
        except (AppError, SQLAlchemyError):
            raise
        except Exception as exc:
            logger.exception("OAuth2 token exchange failed")
            raise AppError(
                ErrorCode.OAUTH2_EXCHANGE_FAILED,
                "The OAuth2 token exchange failed.",
                400,
            ) from exc

        self._notify(
            self.notifier.send_login_alert, Recipient.from_user(user), None, None,
        )
        logger.info("OAuth2 token exchanged: user_id=%s provider=%s", user.id, provider_label)
        return payload

    # ── Refresh / logout ───────────────────────────────────────────────────

    @_infrastructure_boundary
    def refresh_token(self, raw_refresh_token: str) -> dict:
        """
        Verifies the refresh token, rotates it and returns a new session.
        The presented token is revoked; presenting it again fails.

        Raises:
          AppError(REFRESH_TOKEN_INVALID, 401) — not found, expired, revoked,
            or claimed by a concurrent refresh. The precise RefreshTokenError
            is chained as __cause__.
          AppError(ACCOUNT_DISABLED, 403) / AppError(ACCOUNT_LOCKED, 403)
        """
        try:
            record = self.refresh_tokens.verify(raw_refresh_token)
            user = record.user
            if user.status == UserStatus.DELETED:
                raise AppError(
                    ErrorCode.REFRESH_TOKEN_INVALID,
                    "The refresh token is invalid, expired, or has been revoked.",
                    401,
                )
            _ensure_may_authenticate(user)
            rotated = self.refresh_tokens.rotate(record)
        except RefreshTokenError as exc:
            logger.info("Refresh rejected: %s", exc)
            raise AppError(
                ErrorCode.REFRESH_TOKEN_INVALID,
                "The refresh token is invalid, expired, or has been revoked.",
                401,
            ) from exc

        logger.info("Refresh token rotated for user_id=%s", user.id)
        return self._issue_session(user, refresh=rotated)

    @_infrastructure_boundary
    def logout(self, raw_refresh_token: str) -> None:
        """Revokes the refresh token. Always succeeds, even if unknown."""
        self.refresh_tokens.revoke(raw_refresh_token)

    # ── Email verification ─────────────────────────────────────────────────

    @_infrastructure_boundary
    def verify_email(self, raw_token: str) -> None:
        """
        Consumes an email verification token and activates its user. The
        status change and the consumption share the caller's transaction.

        Raises:
          AppError(INVALID_OR_EXPIRED_TOKEN, 400)
        """
        try:
            record = self.verification_tokens.find_valid(raw_token)
            self.verification_tokens.consume(record)
        except ProofTokenError as exc:
            raise _invalid_proof_token("verification", exc) from exc

        user = record.user
        user.email_verified = True
        if user.status == UserStatus.PENDING_VERIFICATION:
            user.status = UserStatus.ACTIVE
        self.store.save(user)
        logger.info("Email verified for user_id=%s", user.id)

    # ── Password reset ─────────────────────────────────────────────────────

    @_infrastructure_boundary
    def forgot_password(self, email: str) -> None:
        """
        Replaces any pending reset token of the user with a fresh one and
        dispatches the reset link.

        Raises:
          AppError(USER_NOT_FOUND, 404)
        """
        email = normalize_email(email)
        user = self.store.find_by_email(email)
        if user is None:
            raise AppError(
                ErrorCode.USER_NOT_FOUND,
                "No account is registered with that email address.",
                404,
                field="email",
            )

        self.reset_tokens.delete_all(user.id)
        issued = self.reset_tokens.create(user, self.settings.password_reset_ttl_hours)
        self._notify(
            self.notifier.send_password_reset, Recipient.from_user(user), issued.raw,
        )
        logger.info("Password reset requested for user_id=%s", user.id)

    @_infrastructure_boundary
    def reset_password(self, raw_token: str, new_password: str) -> None:
        """
        Consumes a reset token, replaces the password hash and revokes every
        refresh token of the user, ending all of their sessions.

        Raises:
          AppError(INVALID_OR_EXPIRED_TOKEN, 400)
        """
        try:
            record = self.reset_tokens.find_valid(raw_token)
            self.reset_tokens.consume(record)
        except ProofTokenError as exc:
            raise _invalid_proof_token("password reset", exc) from exc

        user = record.user
        user.password_hash = hash_password(new_password, rounds=self.settings.bcrypt_rounds)
        self.store.save(user)
        revoked = self.refresh_tokens.revoke_all(user.id)
        logger.info(
            "Password reset for user_id=%s; %s refresh token(s) revoked", user.id, revoked,
        )

    # ── Profile ────────────────────────────────────────────────────────────

    @_infrastructure_boundary
    def get_current_user(self, user_id: int) -> dict:
        """
        Returns the profile of the currently authenticated user.

        Raises:
          AppError(USER_NOT_FOUND, 404) — user deleted after the token was issued
        """
        user = self.store.find_by_id(user_id)
        if user is None:
            raise AppError(
                ErrorCode.USER_NOT_FOUND,
                f"User {user_id} not found.",
                404,
            )
        return {
            **self._build_user_dict(user),
            "full_name": user.full_name,
            "provider": user.provider.value,
            "image_url": user.image_url,
            "roles": list(user.role_names),
        }

    # ── Private helpers ────────────────────────────────────────────────────

    def _issue_session(
            self,
            user: User,
            refresh: IssuedRefreshToken | None = None,
    ) -> dict:
        """Signs an access token and pairs it with a refresh token."""
        if refresh is None:
            refresh = self.refresh_tokens.issue(user)
        return {
            "access_token": self.codec.sign(AuthenticatedSubject.from_user(user)),
            "refresh_token": refresh.raw,
            "token_type": TOKEN_TYPE,
            "expires_in": self.codec.expires_in_seconds,
            "user": self._build_user_dict(user),
        }

    @staticmethod
    def _build_user_dict(user: User) -> dict:
        """Serialises a User to a plain dict. No business logic."""
        return {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email_verified": user.email_verified,
            "status": user.status.value,
        }

    @staticmethod
    def _notify(send: Callable, recipient: Recipient, *args) -> None:
        try:
            send(recipient, *args)
        except Exception:
            logger.exception(
                "Could not dispatch notification to %s", redact_email(recipient.email),
            )


def _ensure_may_authenticate(user: User) -> None:
    if user.status == UserStatus.DISABLED:
        raise AppError(ErrorCode.ACCOUNT_DISABLED, "This account has been disabled.", 403)
    if user.status == UserStatus.LOCKED:
        raise AppError(ErrorCode.ACCOUNT_LOCKED, "This account has been locked.", 403)


def _email_exists(email: str) -> AppError:
    return AppError(
        ErrorCode.EMAIL_EXISTS,
        f"The email address '{email}' is already registered.",
        409,
        field="email",
    )


def _invalid_proof_token(kind: str, exc: ProofTokenError) -> AppError:
    logger.info("Rejected %s token: %s", kind, exc)
    return AppError(
        ErrorCode.INVALID_OR_EXPIRED_TOKEN,
        f"The {kind} link is invalid or has expired.",
        400,
    )
