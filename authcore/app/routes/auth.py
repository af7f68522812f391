"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body (or query string)
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE AuthService operation
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries. No bare SQL.
AppError propagates to the global error handler in app/__init__.py; routes
never catch it.

Endpoints (url_prefix=/api/v1/auth):
  POST   /signup            → 201
  POST   /login             → 200
  POST   /oauth2/token      → 200
  POST   /refresh           → 200
  POST   /logout            → 200
  GET    /verify-email      → 200
  POST   /forgot-password   → 200
  POST   /reset-password    → 200
  GET    /me                → 200 (auth required)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from authcore.app.extensions import auth_components, db
from authcore.app.middleware.auth_middleware import require_auth
from authcore.app.schemas.auth_schema import (
    ForgotPasswordSchema,
    LoginSchema,
    OAuth2TokenSchema,
    RefreshTokenSchema,
    ResetPasswordSchema,
    SignupSchema,
    VerifyEmailSchema,
)
from authcore.app.services.auth_service import AuthService

auth_bp = Blueprint("auth", __name__)


def _auth_service() -> AuthService:
    components = auth_components()
    return AuthService(
        db.session,
        settings=components.settings,
        codec=components.codec,
        notifier=components.notifier,
        throttle=components.throttle,
    )


def _json_body() -> dict:
    return request.get_json(force=True, silent=True) or {}


def _message(text: str):
    return jsonify({"data": {"message": text}, "warnings": []}), 200


@auth_bp.route("/signup", methods=["POST"])
def signup():
    """POST /auth/signup — Create account; return tokens. (No auth required.)"""
    data = SignupSchema().load(_json_body())
    result = _auth_service().signup(
        email=data["email"],
        password=data["password"],
        first_name=data["first_name"],
        last_name=data["last_name"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return tokens. (No auth required.)"""
    data = LoginSchema().load(_json_body())
    result = _auth_service().login(
        email=data["email"],
        password=data["password"],
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/oauth2/token", methods=["POST"])
def exchange_oauth2_token():
    """POST /auth/oauth2/token — Trade the redirect token for a full session."""
    data = OAuth2TokenSchema().load(_json_body())
    result = _auth_service().exchange_oauth2_token(data["token"], provider=data["provider"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate the refresh token; return a new pair."""
    data = RefreshTokenSchema().load(_json_body())
    result = _auth_service().refresh_token(data["refresh_token"])
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke the refresh token. Idempotent."""
    data = RefreshTokenSchema().load(_json_body())
    _auth_service().logout(data["refresh_token"])
    db.session.commit()
    return _message("Logged out successfully.")


@auth_bp.route("/verify-email", methods=["GET"])
def verify_email():
    """GET /auth/verify-email?token=... — Target of the verification link."""
    data = VerifyEmailSchema().load(request.args.to_dict())
    _auth_service().verify_email(data["token"])
    db.session.commit()
    return _message("Email verified successfully.")


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """POST /auth/forgot-password — Email a password reset link."""
    data = ForgotPasswordSchema().load(_json_body())
    _auth_service().forgot_password(data["email"])
    db.session.commit()
    return _message("Password reset email sent.")


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    """POST /auth/reset-password — Set a new password; ends all sessions."""
    data = ResetPasswordSchema().load(_json_body())
    _auth_service().reset_password(data["token"], data["new_password"])
    db.session.commit()
    return _message("Password reset successfully.")


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile. (Auth required.)"""
    result = _auth_service().get_current_user(g.user_id)
    return jsonify({"data": result, "warnings": []}), 200
