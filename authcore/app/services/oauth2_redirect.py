"""
services/oauth2_redirect.py — Redirect targets for the social login callback.

The provider handshake itself (authorization code grant, fetching the user
info) happens in the OAuth2 client that sits in front of this package. Once
it has the provider's attribute bag it calls one of these functions:

  build_success_redirect: resolves the identity, signs an access token and
    returns `<redirect_uri>?token=<access token>`. The client then posts that
    token to POST /auth/oauth2/token to obtain a full session.
  build_failure_redirect: returns `<redirect_uri>?error=<message>`.

Neither function commits; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from authcore.app.security.token_codec import AuthenticatedSubject, TokenCodec
from authcore.app.services.credential_store import CredentialStore
from authcore.app.services.identity_resolution import resolve_identity

logger = logging.getLogger(__name__)


def _with_query_param(url: str, name: str, value: str) -> str:
    """Adds (or replaces) one query parameter, keeping the rest of the URL."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    query.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_success_redirect(
        provider: str,
        attributes: Mapping[str, Any],
        store: CredentialStore,
        codec: TokenCodec,
        redirect_uri: str,
) -> str:
    """
    Raises the AppErrors of resolve_identity (UNSUPPORTED_PROVIDER,
    MISSING_EMAIL, PROVIDER_IDENTITY_CONFLICT); callers usually turn those
    into build_failure_redirect.
    """
    user = resolve_identity(provider, attributes, store)
    token = codec.sign(AuthenticatedSubject.from_user(user))
    logger.info("OAuth2 login succeeded via %s for user_id=%s", provider, user.id)
    return _with_query_param(redirect_uri, "token", token)


def build_failure_redirect(redirect_uri: str, error: str) -> str:
    logger.info("OAuth2 login failed: %s", error)
    return _with_query_param(redirect_uri, "error", error)
