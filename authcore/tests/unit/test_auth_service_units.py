"""
Unit tests for AuthService branches not naturally hit in integration flow.

The session is a MagicMock; store and ledger calls are stubbed per test.
"""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from authcore.app.errors import AppError, ErrorCode
from authcore.app.models.user import AuthProvider, UserStatus
from authcore.app.security.token_codec import AuthenticatedSubject, TokenCodec
from authcore.app.services.auth_service import AuthService
from authcore.app.services.login_throttle import LoginThrottle
from authcore.config import AuthSettings

SETTINGS = AuthSettings(
    access_token_ttl=timedelta(minutes=15),
    refresh_token_ttl=timedelta(days=7),
    bcrypt_rounds=4,
)
CODEC = TokenCodec("unit-test-secret-with-at-least-32-bytes", ttl=SETTINGS.access_token_ttl)


def _service(throttle=None) -> AuthService:
    return AuthService(
        MagicMock(),
        settings=SETTINGS,
        codec=CODEC,
        notifier=MagicMock(),
        throttle=throttle,
    )


def _user(**overrides):
    values = dict(
        id=7,
        email="alice@example.com",
        first_name="Alice",
        last_name="Smith",
        email_verified=True,
        status=UserStatus.ACTIVE,
        provider=AuthProvider.LOCAL,
        password_hash=None,
        role_names=("ROLE_USER",),
        full_name="Alice Smith",
        image_url=None,
    )
    values.update(overrides)
    values.setdefault("is_active", values["status"] == UserStatus.ACTIVE)
    return SimpleNamespace(**values)


# ── get_current_user ───────────────────────────────────────────────────────

def test_get_current_user_returns_serialized_user():
    service = _service()
    service.session.get.return_value = _user()

    result = service.get_current_user(user_id=7)

    assert result == {
        "id": 7,
        "email": "alice@example.com",
        "first_name": "Alice",
        "last_name": "Smith",
        "email_verified": True,
        "status": "ACTIVE",
        "full_name": "Alice Smith",
        "provider": "LOCAL",
        "image_url": None,
        "roles": ["ROLE_USER"],
    }


def test_get_current_user_raises_user_not_found():
    service = _service()
    service.session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        service.get_current_user(user_id=99999)

    err = exc_info.value
    assert err.code == ErrorCode.USER_NOT_FOUND
    assert err.http_status == 404


# ── login ──────────────────────────────────────────────────────────────────

def test_login_rejected_by_throttle_before_store_lookup():
    throttle = MagicMock()
    throttle.allows.return_value = False
    throttle.retry_after_seconds.return_value = 42
    service = _service(throttle=throttle)
    service.store = MagicMock()

    with pytest.raises(AppError) as exc_info:
        service.login("alice@example.com", "Password1")

    assert exc_info.value.code == ErrorCode.TOO_MANY_ATTEMPTS
    assert exc_info.value.http_status == 429
    assert exc_info.value.headers == {"Retry-After": "42"}
    service.store.find_by_email.assert_not_called()


def test_failed_login_spends_a_throttle_token():
    throttle = LoginThrottle(limit=2, window_seconds=60)
    service = _service(throttle=throttle)
    service.store = MagicMock()
    service.store.find_by_email.return_value = None

    for _ in range(2):
        with pytest.raises(AppError):
            service.login("Alice@Example.com", "Password1")

    assert not throttle.allows("alice@example.com")


def test_login_key_is_the_normalised_email():
    throttle = MagicMock()
    throttle.allows.return_value = True
    service = _service(throttle=throttle)
    service.store = MagicMock()
    service.store.find_by_email.return_value = None

    with pytest.raises(AppError):
        service.login("  Alice@Example.COM ", "Password1")

    throttle.allows.assert_called_once_with("alice@example.com")
    throttle.record_failure.assert_called_once_with("alice@example.com")


# ── exchange_oauth2_token ──────────────────────────────────────────────────

def test_exchange_unknown_subject_raises_user_not_found():
    service = _service()
    service.store = MagicMock()
    service.store.find_by_id.return_value = None
    token = CODEC.sign(AuthenticatedSubject(id=404, email="ghost@example.com"))

    with pytest.raises(AppError) as exc_info:
        service.exchange_oauth2_token(token)

    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND


@pytest.mark.parametrize("status", [
    UserStatus.PENDING_VERIFICATION,
    UserStatus.LOCKED,
    UserStatus.DISABLED,
    UserStatus.DELETED,
])
def test_exchange_requires_active_status(status):
    service = _service()
    service.store = MagicMock()
    service.store.find_by_id.return_value = _user(status=status)
    token = CODEC.sign(AuthenticatedSubject(id=7, email="alice@example.com"))

    with pytest.raises(AppError) as exc_info:
        service.exchange_oauth2_token(token)

    assert exc_info.value.code == ErrorCode.ACCOUNT_NOT_ACTIVE
    assert exc_info.value.http_status == 403


# ── best-effort notifications ──────────────────────────────────────────────

def test_notify_swallows_and_logs_failures(caplog):
    recipient = SimpleNamespace(email="alice@example.com")
    send = MagicMock(side_effect=ConnectionError("smtp down"))

    with caplog.at_level("ERROR", logger="authcore.app.services.auth_service"):
        AuthService._notify(send, recipient, "token")

    send.assert_called_once_with(recipient, "token")
    assert "al***@example.com" in caplog.text
    assert "alice@example.com" not in caplog.text


# ── infrastructure failures ────────────────────────────────────────────────

def test_store_failure_maps_to_infrastructure_error():
    service = _service()
    service.store = MagicMock()
    service.store.find_by_email.side_effect = OperationalError(
        "SELECT", {}, Exception("connection refused"),
    )

    with pytest.raises(AppError) as exc_info:
        service.forgot_password("alice@example.com")

    assert exc_info.value.code == ErrorCode.INFRASTRUCTURE_ERROR
    assert exc_info.value.http_status == 503
    assert isinstance(exc_info.value.__cause__, OperationalError)
