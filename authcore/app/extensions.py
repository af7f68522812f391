"""
extensions.py — Flask extension singletons and per-app auth components.

Initialises SQLAlchemy as a module-level object so it can be imported
anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` from here wherever needed.

    from authcore.app.extensions import db

The auth collaborators (token codec, notifier, login throttle) are built once
per app by init_auth() and stored on app.extensions["authcore"]. Routes and
middleware read them through auth_components(); services receive them as
explicit constructor arguments and never touch current_app.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy

from authcore.config import AuthSettings

db = SQLAlchemy()

_EXTENSION_KEY = "authcore"


@dataclass
class AuthComponents:
    settings: AuthSettings
    codec: "TokenCodec"  # noqa: F821
    notifier: "BackgroundDispatcher"  # noqa: F821
    throttle: "LoginThrottle | None" = None  # noqa: F821


def init_auth(app: Flask) -> AuthComponents:
    """Builds the auth collaborators from app.config and registers them."""
    # Imported here to keep this module importable before models/services.
    from authcore.app.security.token_codec import TokenCodec
    from authcore.app.services.login_throttle import LoginThrottle
    from authcore.app.services.notification_dispatcher import (
        BackgroundDispatcher,
        LoggingNotifier,
    )

    throttle = None
    if app.config.get("LOGIN_RATE_LIMIT", 0) > 0:
        throttle = LoginThrottle(
            limit=app.config["LOGIN_RATE_LIMIT"],
            window_seconds=app.config["LOGIN_RATE_WINDOW_SECONDS"],
        )

    components = AuthComponents(
        settings=AuthSettings.from_mapping(app.config),
        codec=TokenCodec.from_config(app.config),
        notifier=BackgroundDispatcher(
            LoggingNotifier(
                app_url=app.config["APP_URL"],
                frontend_url=app.config["FRONTEND_URL"],
            ),
            max_workers=app.config.get("NOTIFICATION_WORKERS", 2),
        ),
        throttle=throttle,
    )
    app.extensions[_EXTENSION_KEY] = components
    return components


def auth_components(app: Flask | None = None) -> AuthComponents:
    """Returns the AuthComponents registered on `app` (default: current_app)."""
    target = app if app is not None else current_app
    return target.extensions[_EXTENSION_KEY]
