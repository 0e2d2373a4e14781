"""
Password reset token lifecycle: request, validate, complete.

Request never reveals whether the email belongs to an account. Validate
reports only valid/invalid to callers; the precise reason stays
server-side. Complete applies all of its mutations in one transaction and
marks the token with a conditional UPDATE, so a token can be spent once
even when two completions race.
"""

import secrets
from datetime import datetime, timedelta
from typing import NamedTuple, Optional
from urllib.parse import urlencode

from flask import current_app
from sqlalchemy import or_

from models import db
from models.password_reset_token import PasswordResetToken
from models.user import User
from security.auth_token import clear_auth_token
from security.errors import InvalidOrExpiredToken
from security.lockout import unlock_account
from security.password import hash_password
from security.session import revoke_all_sessions
from utils.emailer import queue_email, send_password_reset_email
from utils.log import get_logger
from utils.user_store import get_user_by_email

logger = get_logger(__name__)

TOKEN_NOT_FOUND = "TokenNotFound"
TOKEN_ALREADY_USED = "TokenAlreadyUsed"
TOKEN_EXPIRED = "TokenExpired"


class TokenValidation(NamedTuple):
    valid: bool
    user_id: Optional[int] = None
    username: Optional[str] = None
    # server-side only; callers see a generic "invalid or expired"
    reason: Optional[str] = None


def _ttl_seconds() -> int:
    return current_app.config.get("RESET_TOKEN_TTL_SECONDS", 60 * 60)


def generate_reset_token() -> str:
    # 48 random bytes -> 384 bits, URL-safe
    return secrets.token_urlsafe(48)


def build_reset_url(token: str) -> str:
    base = current_app.config.get("APP_URL", "http://localhost:5000").rstrip("/")
    return f"{base}/reset-password?{urlencode({'token': token})}"


def request_password_reset(email: str) -> None:
    """
    Issues a reset token and emails the link. Returns None whether or not
    the account exists.
    """
    user = get_user_by_email(email)
    if user is None:
        logger.info("password_reset_unknown_email")
        return None

    now = datetime.utcnow()
    token = generate_reset_token()
    row = PasswordResetToken(
        user_id=user.id,
        token=token,
        created_at=now,
        expires_at=now + timedelta(seconds=_ttl_seconds()),
    )
    db.session.add(row)
    db.session.commit()

    # delivery happens off the request path; a failure is logged by the outbox
    # and the token stays, so the user can simply ask again
    queue_email(
        send_password_reset_email,
        user.email,
        username=user.username,
        reset_url=build_reset_url(token),
        ttl_minutes=_ttl_seconds() // 60,
    )
    logger.info("password_reset_token_created", user_id=user.id)
    return None


def _lookup(token: str):
    if not token or not isinstance(token, str):
        return None
    return (
        db.session.query(PasswordResetToken, User.username)
        .join(User, PasswordResetToken.user_id == User.id)
        .filter(PasswordResetToken.token == token)
        .first()
    )


def validate_reset_token(token: str) -> TokenValidation:
    found = _lookup(token)
    if found is None:
        return TokenValidation(False, reason=TOKEN_NOT_FOUND)

    row, username = found
    if row.used_at is not None:
        return TokenValidation(False, reason=TOKEN_ALREADY_USED)
    if row.expires_at <= datetime.utcnow():
        return TokenValidation(False, reason=TOKEN_EXPIRED)

    return TokenValidation(True, user_id=row.user_id, username=username)


def complete_password_reset(token: str, new_password: str) -> int:
    """
    Sets the new password, clears lockout, signs the user out everywhere
    and spends the token. Returns the user id.
    Raises InvalidOrExpiredToken without mutating anything on failure.
    """
    validation = validate_reset_token(token)
    if not validation.valid:
        logger.info("password_reset_rejected", reason=validation.reason)
        raise InvalidOrExpiredToken()

    now = datetime.utcnow()
    new_hash = hash_password(new_password)

    try:
        # spend the token first; zero rows means another request beat us to it
        spent = (
            PasswordResetToken.query
            .filter(
                PasswordResetToken.token == token,
                PasswordResetToken.used_at.is_(None),
                PasswordResetToken.expires_at > now,
            )
            .update({"used_at": now}, synchronize_session="fetch")
        )
        if spent != 1:
            logger.info("password_reset_rejected", reason=TOKEN_ALREADY_USED)
            raise InvalidOrExpiredToken()

        user = db.session.get(User, validation.user_id)
        user.password_hash = new_hash
        user.password_changed_at = now
        unlock_account(user, commit=False)
        clear_auth_token(user, commit=False)
        revoked = revoke_all_sessions(user.id, commit=False)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("password_reset_completed", user_id=validation.user_id, revoked_sessions=revoked)
    return validation.user_id


def purge_expired_reset_tokens() -> int:
    """Deletes tokens that are expired or already used. Returns rows removed."""
    removed = (
        PasswordResetToken.query
        .filter(or_(
            PasswordResetToken.expires_at <= datetime.utcnow(),
            PasswordResetToken.used_at.isnot(None),
        ))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return removed
