"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats, password strength. Input that
    fails here is rejected before anything touches the database.
  - services/auth_service.py: EMAIL_EXISTS, INVALID_CREDENTIALS and every
    other rule that needs a DB lookup.

Emails are trimmed and lower-cased before validation so "  Alice@X.com "
and "alice@x.com" are the same account.

IMPORTANT: All schemas inherit from marshmallow.Schema directly, so they can
           be loaded in unit tests without a Flask app context.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, pre_load, validate, validates

from authcore.app.security.passwords import MAX_PASSWORD_BYTES

_PASSWORD_MIN_LENGTH = 8


def _validate_password_strength(value: str) -> None:
    """Min 8 chars, at most 72 UTF-8 bytes, at least one letter and one digit."""
    if len(value) < _PASSWORD_MIN_LENGTH:
        raise ValidationError("Password must be at least 8 characters long.")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError("Password must be at most 72 bytes long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


class _NormalisedEmailSchema(Schema):
    """Base for schemas with an `email` field."""

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    @pre_load
    def normalise_email(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get("email"), str):
            data = {**data, "email": data["email"].strip().lower()}
        return data


class SignupSchema(_NormalisedEmailSchema):
    """
    POST /auth/signup

    Field rules:
      email      : valid email format, max 255 chars
      password   : see _validate_password_strength
      first_name : 1–100 chars
      last_name  : 1–100 chars
    """

    password = fields.Str(required=True, load_only=True)

    first_name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
    )
    last_name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
    )

    @validates("password")
    def validate_password(self, value: str, **kwargs) -> None:
        _validate_password_strength(value)


class LoginSchema(_NormalisedEmailSchema):
    """
    POST /auth/login

    Only shape is checked here; a weak stored password must still be able
    to log in. Credential correctness is checked in auth_service.py.
    """

    password = fields.Str(required=True, load_only=True)


class OAuth2TokenSchema(Schema):
    """POST /auth/oauth2/token — the token carried by the OAuth2 redirect."""

    token = fields.Str(required=True, validate=validate.Length(min=1))
    # Optional registration id ("google", ...); checked by the service.
    provider = fields.Str(load_default=None)


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh, POST /auth/logout

    Token validity (revoked, expired, not found) is checked in
    auth_service.py (REFRESH_TOKEN_INVALID, 401).
    """

    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))


class VerifyEmailSchema(Schema):
    """GET /auth/verify-email?token=..."""

    token = fields.Str(required=True, validate=validate.Length(min=1))


class ForgotPasswordSchema(_NormalisedEmailSchema):
    """POST /auth/forgot-password"""


class ResetPasswordSchema(Schema):
    """POST /auth/reset-password"""

    token = fields.Str(required=True, validate=validate.Length(min=1))
    new_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_new_password(self, value: str, **kwargs) -> None:
        _validate_password_strength(value)
