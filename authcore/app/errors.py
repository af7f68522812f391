"""
errors.py — AppError base class and error code registry.

Every error returned by the authcore API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Token failures never reveal *why* a token was rejected (not found vs.
    expired vs. revoked). The precise cause travels on ``__cause__`` and in
    the server log only.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
            headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error
        self.headers     = headers or {}  # extra response headers, e.g. Retry-After

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    EMAIL_EXISTS               = "EMAIL_EXISTS"
    PROVIDER_IDENTITY_CONFLICT = "PROVIDER_IDENTITY_CONFLICT"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"

    # ── Account State Errors (403) ─────────────────────────────────────────
    ACCOUNT_DISABLED           = "ACCOUNT_DISABLED"
    ACCOUNT_LOCKED             = "ACCOUNT_LOCKED"
    ACCOUNT_NOT_ACTIVE         = "ACCOUNT_NOT_ACTIVE"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but the account may not proceed
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"
    TOKEN_MISSING              = "TOKEN_MISSING"
    TOKEN_INVALID              = "TOKEN_INVALID"
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"

    # ── Proof Token / OAuth2 Errors (400) ──────────────────────────────────
    INVALID_OR_EXPIRED_TOKEN   = "INVALID_OR_EXPIRED_TOKEN"
    UNSUPPORTED_PROVIDER       = "UNSUPPORTED_PROVIDER"
    MISSING_EMAIL              = "MISSING_EMAIL"
    OAUTH2_EXCHANGE_FAILED     = "OAUTH2_EXCHANGE_FAILED"

    # ── Throttling (429) ───────────────────────────────────────────────────
    TOO_MANY_ATTEMPTS          = "TOO_MANY_ATTEMPTS"

    # ── System Errors (500 / 503) ──────────────────────────────────────────
    INFRASTRUCTURE_ERROR       = "INFRASTRUCTURE_ERROR"   # 503 — store unavailable
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500
