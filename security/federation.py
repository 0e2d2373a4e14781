"""
Maps an external identity onto a local account.

Resolution order: existing link, then an account with the same email
(silently linked), then a brand new password-less account. The unique
constraint on (provider, provider_user_id) settles races between two
callbacks for the same new identity: the loser rolls back and resolves
again through the lookup.
"""

import re
import time

from sqlalchemy.exc import IntegrityError

from models import db
from models.oauth_account import OAuthAccount
from models.user import User
from security.errors import NotFound, ProviderError, UnlinkRefused, ValidationError
from security.token_crypto import get_token_cipher
from utils.log import get_logger
from utils.user_store import create_user, get_user_by_email, get_user_by_username

logger = get_logger(__name__)

USERNAME_MAX_LEN = 20
USERNAME_MAX_SUFFIX = 1000
RESOLVE_ATTEMPTS = 3

_NON_ALNUM = re.compile(r"[^a-z0-9]")

# outcomes of resolve_user
RESOLVED_EXISTING = "existing"
RESOLVED_LINKED = "linked"
RESOLVED_CREATED = "created"


def username_base(name: str) -> str:
    base = _NON_ALNUM.sub("", (name or "").lower())[:USERNAME_MAX_LEN]
    return base or "user"


def generate_unique_username(name: str) -> str:
    base = username_base(name)
    username = base
    counter = 1

    while get_user_by_username(username) is not None:
        if counter > USERNAME_MAX_SUFFIX:
            return f"{base}{int(time.time() * 1000)}"
        username = f"{base}{counter}"
        counter += 1

    return username


def find_user_by_link(provider: str, provider_user_id: str):
    return (
        User.query
        .join(OAuthAccount, OAuthAccount.user_id == User.id)
        .filter(
            OAuthAccount.provider == provider,
            OAuthAccount.provider_user_id == provider_user_id,
        )
        .first()
    )


def _link(user_id: int, provider: str, profile, tokens: dict) -> OAuthAccount:
    cipher = get_token_cipher()
    link = OAuthAccount(
        user_id=user_id,
        provider=provider,
        provider_user_id=profile.provider_user_id,
        provider_email=profile.email,
        access_token=cipher.encrypt(tokens.get("access_token")),
        refresh_token=cipher.encrypt(tokens.get("refresh_token")),
    )
    db.session.add(link)
    return link


def _refresh_stored_tokens(user: User, provider: str, tokens: dict) -> None:
    link = OAuthAccount.query.filter_by(user_id=user.id, provider=provider).first()
    if link is None:
        return
    cipher = get_token_cipher()
    link.access_token = cipher.encrypt(tokens.get("access_token"))
    if tokens.get("refresh_token"):
        link.refresh_token = cipher.encrypt(tokens["refresh_token"])
    db.session.commit()


def _ensure_not_linked_elsewhere(user: User, provider: str, profile) -> None:
    """One link per provider per account: a second identity for the same email is refused."""
    current = OAuthAccount.query.filter_by(user_id=user.id, provider=provider).first()
    if current is not None and current.provider_user_id != profile.provider_user_id:
        logger.warning(
            "oauth_account_already_linked",
            user_id=user.id,
            provider=provider,
            provider_user_id=profile.provider_user_id,
        )
        raise ProviderError("account already linked to another identity", code="account_already_linked")


def _link_existing_account(user: User, provider: str, profile, tokens: dict) -> None:
    _link(user.id, provider, profile, tokens)
    if profile.email_verified:
        user.email_verified = True
    db.session.commit()


def _create_account(provider: str, profile, tokens: dict) -> User:
    user = create_user(
        username=generate_unique_username(profile.name),
        email=profile.email,
        password_hash=None,
        commit=False,
        display_name=profile.name or None,
        first_name=profile.given_name,
        last_name=profile.family_name,
        profile_image=profile.picture,
        email_verified=profile.email_verified,
    )
    _link(user.id, provider, profile, tokens)
    db.session.commit()
    return user


def resolve_user(provider: str, profile, tokens: dict) -> tuple[User, str]:
    """
    Returns (user, outcome) where outcome is one of RESOLVED_*.
    Provider tokens are encrypted before any link row is written.
    """
    for attempt in range(RESOLVE_ATTEMPTS):
        user = find_user_by_link(provider, profile.provider_user_id)
        if user is not None:
            _refresh_stored_tokens(user, provider, tokens)
            return user, RESOLVED_EXISTING

        try:
            existing = get_user_by_email(profile.email) if profile.email else None
            if existing is not None:
                _ensure_not_linked_elsewhere(existing, provider, profile)
                _link_existing_account(existing, provider, profile, tokens)
                logger.info("oauth_linked_existing_user", user_id=existing.id, provider=provider)
                return existing, RESOLVED_LINKED

            user = _create_account(provider, profile, tokens)
            logger.info("oauth_created_user", user_id=user.id, username=user.username, provider=provider)
            return user, RESOLVED_CREATED
        except IntegrityError:
            # a concurrent callback created the link (or took the username) first
            db.session.rollback()
            logger.info(
                "oauth_resolve_conflict",
                provider=provider,
                provider_user_id=profile.provider_user_id,
                attempt=attempt + 1,
            )

    user = find_user_by_link(provider, profile.provider_user_id)
    if user is None:
        raise RuntimeError("could not resolve OAuth identity after concurrent updates")
    return user, RESOLVED_EXISTING


def oauth_status(user: User, providers) -> dict:
    linked = {
        row.provider
        for row in OAuthAccount.query.filter_by(user_id=user.id).all()
    }
    return {name: name in linked for name in providers}


def unlink_provider(user: User, provider: str, known_providers) -> None:
    if provider not in known_providers:
        raise ValidationError("Invalid provider")

    link = OAuthAccount.query.filter_by(user_id=user.id, provider=provider).first()
    if link is None:
        raise NotFound("Provider is not linked")

    if not user.has_password:
        link_count = OAuthAccount.query.filter_by(user_id=user.id).count()
        if link_count <= 1:
            raise UnlinkRefused()

    db.session.delete(link)
    db.session.commit()
    logger.info("oauth_unlinked", user_id=user.id, provider=provider)
