"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which enables multiple
         isolated test app instances.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure the `authcore` logger from LOG_LEVEL
  3. Initialise SQLAlchemy and the auth components (codec, notifier, throttle)
  4. Register the auth blueprint under /api/v1/auth
  5. Register global error handlers (AppError, ValidationError,
     SQLAlchemyError, HTTPException, Exception)
  6. Register CLI commands: init-db, seed-roles, sweep-tokens
  7. Start the background token sweeper (not under TESTING)
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify, request
from flask.logging import default_handler
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from authcore.config import config_by_name, validate_production_config

_SWEEPER_KEY = "authcore.sweeper"


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from authcore.app.extensions import db, init_auth
    db.init_app(app)

    # Import all models so that SQLAlchemy's MetaData is populated.
    with app.app_context():
        from authcore.app.models import proof_token, refresh_token, user  # noqa: F401

    init_auth(app)

    # ── Blueprints ─────────────────────────────────────────────────────────
    from authcore.app.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")

    _register_error_handlers(app)
    _register_cors(app)
    _register_cli(app)
    _start_token_sweeper(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    All modules log through logging.getLogger(__name__), i.e. below the
    `authcore` namespace. They share Flask's default stderr handler.
    """
    package_logger = logging.getLogger("authcore")
    package_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    if default_handler not in package_logger.handlers:
        package_logger.addHandler(default_handler)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct status
      ValidationError → first marshmallow error as MISSING_FIELD /
                        INVALID_FIELD (400)
      SQLAlchemyError → INFRASTRUCTURE_ERROR (503); session rolled back
      HTTPException   → returned unchanged (404 for unknown routes, 405, ...)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from authcore.app.errors import AppError, ErrorCode
    from authcore.app.extensions import db

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            db.session.rollback()
        return jsonify(error.to_dict()), error.http_status, error.headers

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        # One error per response: the first field marshmallow complained about.
        field, message = _first_validation_error(error.messages)
        code = (
            ErrorCode.MISSING_FIELD
            if message.startswith("Missing data for required field")
            else ErrorCode.INVALID_FIELD
        )
        return jsonify(AppError(code, message, 400, field=field).to_dict()), 400

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(error: SQLAlchemyError):
        app.logger.exception("Store failure: %s", error)
        db.session.rollback()
        return jsonify({
            "error": {
                "code": ErrorCode.INFRASTRUCTURE_ERROR,
                "message": "The service is temporarily unavailable. Please try again later.",
            }
        }), 503

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled exception: %s", error)
        db.session.rollback()
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _first_validation_error(messages) -> tuple[str | None, str]:
    """(field, message) of the first entry in a marshmallow messages structure."""
    if isinstance(messages, dict) and messages:
        field_name, errors = next(iter(messages.items()))
        field = None if field_name == "_schema" else field_name
        if isinstance(errors, list):
            return field, str(errors[0]) if errors else "Invalid value."
        return field, str(errors)
    if isinstance(messages, list) and messages:
        return None, str(messages[0])
    return None, "Invalid input."


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _register_cli(app: Flask) -> None:
    from authcore.app.extensions import db
    from authcore.app.services.credential_store import seed_roles
    from authcore.app.services.token_sweeper import sweep_expired_tokens

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables and seed the default roles."""
        db.create_all()
        created = seed_roles(db.session)
        db.session.commit()
        click.echo(f"Tables created; {created} role(s) seeded.")

    @app.cli.command("seed-roles")
    def seed_roles_command():
        """Insert any missing default roles."""
        created = seed_roles(db.session)
        db.session.commit()
        click.echo(f"{created} role(s) seeded.")

    @app.cli.command("sweep-tokens")
    def sweep_tokens_command():
        """Delete expired refresh, verification and reset tokens."""
        counts = sweep_expired_tokens(db.session)
        db.session.commit()
        for table, count in counts.items():
            click.echo(f"{table}: {count} deleted")


def _start_token_sweeper(app: Flask) -> None:
    interval = app.config.get("TOKEN_SWEEP_INTERVAL_SECONDS", 0)
    if interval <= 0 or app.config.get("TESTING"):
        return

    from authcore.app.services.token_sweeper import TokenSweeper

    sweeper = TokenSweeper(app, interval_seconds=interval)
    sweeper.start()
    app.extensions[_SWEEPER_KEY] = sweeper
