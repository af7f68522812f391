"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against in-memory SQLite (TestingConfig default); set
    TEST_DATABASE_URL to point the suite at PostgreSQL instead.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() and the default roles are
    seeded once; roles are reference data and survive between tests.
  - Between tests, all other rows are deleted in FK-safe order.
  - Every test gets a RecordingNotifier in place of the background dispatcher
    so the raw verification/reset tokens can be read back synchronously, and
    a fresh login throttle.

Helper functions (not fixtures) are provided for common operations:
  - signup(client, ...)      → response data dict with user + tokens
  - login(client, ...)       → response data dict with user + tokens
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, select, text
from sqlalchemy.orm import Session

from authcore.app import create_app
from authcore.app.extensions import auth_components
from authcore.app.extensions import db as _db
from authcore.app.models.user import ROLE_USER, AuthProvider, Role, User, UserStatus
from authcore.app.security.passwords import hash_password
from authcore.app.services.auth_service import AuthService
from authcore.app.services.credential_store import seed_roles
from authcore.app.services.login_throttle import LoginThrottle


class RecordingNotifier:
    """Synchronous Notifier that keeps every message in memory."""

    def __init__(self) -> None:
        self.verifications: list[tuple] = []
        self.password_resets: list[tuple] = []
        self.login_alerts: list[tuple] = []

    def send_verification(self, recipient, token):
        self.verifications.append((recipient, token))

    def send_password_reset(self, recipient, token):
        self.password_resets.append((recipient, token))

    def send_login_alert(self, recipient, ip_address, user_agent):
        self.login_alerts.append((recipient, ip_address, user_agent))

    def last_verification_token(self) -> str:
        return self.verifications[-1][1]

    def last_reset_token(self) -> str:
        return self.password_resets[-1][1]


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test
    session, creates all tables and seeds the default roles.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()
        seed_roles(_db.session)
        _db.session.commit()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()
    auth_components(flask_app).notifier.shutdown(wait=False)


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def outbox(app):
    """
    Swaps the app's notifier for a RecordingNotifier and installs a fresh
    login throttle for the duration of one test.
    """
    components = auth_components(app)
    original_notifier = components.notifier
    original_throttle = components.throttle

    recorder = RecordingNotifier()
    components.notifier = recorder
    components.throttle = LoginThrottle(
        limit=app.config["LOGIN_RATE_LIMIT"],
        window_seconds=app.config["LOGIN_RATE_WINDOW_SECONDS"],
    )

    yield recorder

    components.notifier = original_notifier
    components.throttle = original_throttle


@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows except roles between tests, children before parents.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM user_roles"))
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM email_verification_tokens"))
            conn.execute(text("DELETE FROM password_reset_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client and service fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def session(app):
    """db.session inside a pushed app context, for service-level tests."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()


@pytest.fixture
def service(app, session, outbox):
    """AuthService wired the same way the routes wire it."""
    components = auth_components(app)
    return AuthService(
        session,
        settings=components.settings,
        codec=components.codec,
        notifier=outbox,
        throttle=components.throttle,
    )


@pytest.fixture
def file_engine(tmp_path):
    """
    A file-backed SQLite database with its own engine, for tests that need
    two independent connections (race tests). The shared in-memory database
    has only one connection.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'authcore.db'}")
    _db.metadata.create_all(engine)
    with Session(engine) as setup:
        seed_roles(setup)
        setup.commit()
    yield engine
    engine.dispose()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def signup(
    client,
    email: str = "alice@test.com",
    password: str = "Password1",
    first_name: str = "Alice",
    last_name: str = "Smith",
) -> dict:
    """
    Signs up a new user and returns the full response data dict.
    Returns: {"access_token", "refresh_token", "token_type", "expires_in", "user"}
    """
    resp = client.post(
        "/api/v1/auth/signup",
        json={
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
        },
    )
    assert resp.status_code == 201, f"signup failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str = "alice@test.com", password: str = "Password1") -> dict:
    """Logs in a user and returns the response data dict."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def set_status(app, email: str, status) -> None:
    """Moves a user to `status` directly in the store (administrative action)."""
    with app.app_context():
        user = _db.session.execute(
            select(User).where(User.email == email)
        ).scalar_one()
        user.status = status
        _db.session.commit()


def make_user(
    session,
    email: str = "bob@test.com",
    password: str | None = "Password1",
    status: UserStatus = UserStatus.ACTIVE,
    provider: AuthProvider = AuthProvider.LOCAL,
    first_name: str | None = "Bob",
    last_name: str | None = "Jones",
) -> User:
    """Inserts a user with ROLE_USER directly through `session` and flushes."""
    user = User(
        email=email,
        password_hash=hash_password(password, rounds=4) if password else None,
        first_name=first_name,
        last_name=last_name,
        email_verified=provider != AuthProvider.LOCAL,
        status=status,
        provider=provider,
    )
    user.roles.add(session.execute(
        select(Role).where(Role.name == ROLE_USER)
    ).scalar_one())
    session.add(user)
    session.flush()
    return user
