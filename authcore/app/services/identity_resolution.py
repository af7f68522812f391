"""
services/identity_resolution.py — Maps a social-provider profile to a User.

Extraction is a closed mapping from AuthProvider to a pure function that
turns the provider's attribute bag into a uniform ProviderProfile. Adding a
provider means adding one AuthProvider member and one extractor below.

Account linking rules (resolve_identity):
  - The email is the join key. A provider that supplies no email fails with
    MISSING_EMAIL; an unknown provider fails with UNSUPPORTED_PROVIDER.
  - Existing user: first/last name and image URL are overwritten only by
    non-empty values that differ from the stored ones. A LOCAL account is
    upgraded in place (provider + provider_id set); it is never duplicated.
  - New user: ACTIVE, email_verified=True, ROLE_USER, provider + provider_id.
  - A provider identity already held by a user with a different email
    fails with PROVIDER_IDENTITY_CONFLICT.

Layer rules: no commits (flush only), no Flask imports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from authcore.app.errors import AppError, ErrorCode
from authcore.app.models.user import ROLE_USER, AuthProvider, User, UserStatus
from authcore.app.security.opaque import redact_email
from authcore.app.services.credential_store import CredentialStore, DuplicateProviderIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    external_id: str | None
    email: str | None
    first_name: str | None
    last_name: str | None
    image_url: str | None = None


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _google_profile(attributes: Mapping[str, Any]) -> ProviderProfile:
    return ProviderProfile(
        external_id=_str_or_none(attributes.get("sub")),
        email=_str_or_none(attributes.get("email")),
        first_name=_str_or_none(attributes.get("given_name")),
        last_name=_str_or_none(attributes.get("family_name")),
        image_url=_str_or_none(attributes.get("picture")),
    )


def _github_profile(attributes: Mapping[str, Any]) -> ProviderProfile:
    # GitHub only has a free-form display name: first word / last word.
    parts = (_str_or_none(attributes.get("name")) or "").split()
    return ProviderProfile(
        external_id=_str_or_none(attributes.get("id")),
        email=_str_or_none(attributes.get("email")),
        first_name=parts[0] if parts else None,
        last_name=parts[-1] if len(parts) > 1 else None,
        image_url=_str_or_none(attributes.get("avatar_url")),
    )


def _facebook_profile(attributes: Mapping[str, Any]) -> ProviderProfile:
    picture = attributes.get("picture")
    image_url = None
    if isinstance(picture, Mapping) and isinstance(picture.get("data"), Mapping):
        image_url = _str_or_none(picture["data"].get("url"))
    return ProviderProfile(
        external_id=_str_or_none(attributes.get("id")),
        email=_str_or_none(attributes.get("email")),
        first_name=_str_or_none(attributes.get("first_name")),
        last_name=_str_or_none(attributes.get("last_name")),
        image_url=image_url,
    )


_EXTRACTORS: dict[AuthProvider, Callable[[Mapping[str, Any]], ProviderProfile]] = {
    AuthProvider.GOOGLE:   _google_profile,
    AuthProvider.GITHUB:   _github_profile,
    AuthProvider.FACEBOOK: _facebook_profile,
}


def social_provider(provider_name: str) -> AuthProvider:
    """Maps a registration id ("google", "GitHub", ...) to its AuthProvider."""
    try:
        provider = AuthProvider((provider_name or "").strip().upper())
    except ValueError:
        provider = None
    if provider is None or provider not in _EXTRACTORS:
        raise AppError(
            ErrorCode.UNSUPPORTED_PROVIDER,
            f"Login with '{provider_name}' is not supported.",
            400,
        )
    return provider


def extract_profile(provider_name: str, attributes: Mapping[str, Any]) -> ProviderProfile:
    provider = social_provider(provider_name)
    return _EXTRACTORS[provider](attributes)


def resolve_identity(
        provider_name: str,
        attributes: Mapping[str, Any],
        store: CredentialStore,
) -> User:
    """
    Returns the User for a successful social login, creating or linking it.

    Raises:
      AppError(UNSUPPORTED_PROVIDER, 400)
      AppError(MISSING_EMAIL, 400)
      AppError(PROVIDER_IDENTITY_CONFLICT, 409)
    """
    provider = social_provider(provider_name)
    profile = _EXTRACTORS[provider](attributes)

    if not profile.email:
        raise AppError(
            ErrorCode.MISSING_EMAIL,
            f"The {provider.value.lower()} account did not provide an email address.",
            400,
        )

    user = store.find_by_email(profile.email)
    try:
        if user is None:
            return _register_social_user(provider, profile, store)
        return _update_existing_user(user, provider, profile, store)
    except DuplicateProviderIdentity as exc:
        logger.warning("Rejected %s login: %s", provider.value, exc)
        raise AppError(
            ErrorCode.PROVIDER_IDENTITY_CONFLICT,
            f"This {provider.value.lower()} account is already linked to another user.",
            409,
        ) from exc


def _register_social_user(
        provider: AuthProvider,
        profile: ProviderProfile,
        store: CredentialStore,
) -> User:
    logger.info(
        "Registering new %s user %s", provider.value, redact_email(profile.email),
    )
    user = User(
        email=profile.email,
        password_hash=None,
        first_name=profile.first_name,
        last_name=profile.last_name,
        provider=provider,
        provider_id=profile.external_id,
        image_url=profile.image_url,
        # The provider has already verified the address.
        email_verified=True,
        status=UserStatus.ACTIVE,
    )
    user.roles.add(store.get_role(ROLE_USER))
    return store.save(user)


def _update_existing_user(
        user: User,
        provider: AuthProvider,
        profile: ProviderProfile,
        store: CredentialStore,
) -> User:
    if profile.first_name and profile.first_name != user.first_name:
        user.first_name = profile.first_name
    if profile.last_name and profile.last_name != user.last_name:
        user.last_name = profile.last_name
    if profile.image_url and profile.image_url != user.image_url:
        user.image_url = profile.image_url

    if user.provider == AuthProvider.LOCAL:
        logger.info(
            "Linking %s identity to local user_id=%s", provider.value, user.id,
        )
        user.provider = provider
        user.provider_id = profile.external_id

    return store.save(user)
