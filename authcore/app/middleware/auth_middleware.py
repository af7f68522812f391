"""
middleware/auth_middleware.py — Bearer token authentication decorator.

@require_auth verifies the access token of the request with the app's
TokenCodec and exposes the result as g.subject (AuthenticatedSubject) and
g.user_id. It authenticates only; whether a disabled or locked account may
proceed is decided by the service layer.

Failures, all 401:
  TOKEN_MISSING  — no Authorization header
  TOKEN_INVALID  — header not "Bearer <token>", or the token is malformed,
                   forged, or signed with an algorithm the codec refuses
  TOKEN_EXPIRED  — well-formed token whose exp claim has passed
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from authcore.app.errors import AppError, ErrorCode
from authcore.app.extensions import auth_components
from authcore.app.security.token_codec import TokenError, TokenExpired


def require_auth(view: Callable) -> Callable:
    """
    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            ...  # g.user_id is the authenticated user's id
    """
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        try:
            subject = auth_components().codec.verify(token)
        except TokenExpired as exc:
            raise AppError(
                ErrorCode.TOKEN_EXPIRED,
                "The access token has expired. Refresh the session and retry.",
                401,
            ) from exc
        except TokenError as exc:
            raise AppError(
                ErrorCode.TOKEN_INVALID,
                "The access token could not be verified.",
                401,
            ) from exc

        g.subject = subject
        g.user_id = subject.id
        return view(*args, **kwargs)

    return wrapper


def _bearer_token() -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "This endpoint requires an access token.",
            401,
        )

    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Expected an Authorization header of the form 'Bearer <token>'.",
            401,
        )
    return token
