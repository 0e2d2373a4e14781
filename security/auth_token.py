import hashlib
import secrets
from datetime import datetime, timedelta

from flask import current_app

from models import db
from models.user import User


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_auth_token(user: User) -> str:
    """
    Issues a bearer token for API clients and returns the RAW value.
    Only the hash is stored on the user row; issuing replaces any previous token.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("AUTH_TOKEN_LIFETIME_SECONDS", 30 * 24 * 60 * 60)

    user.auth_token_hash = _hash_token(raw_token)
    user.auth_token_expires_at = datetime.utcnow() + timedelta(seconds=lifetime)
    db.session.commit()
    return raw_token


def get_user_by_auth_token(raw_token: str):
    if not raw_token:
        return None
    user = User.query.filter_by(auth_token_hash=_hash_token(raw_token)).first()
    if not user:
        return None
    if user.auth_token_expires_at and user.auth_token_expires_at <= datetime.utcnow():
        return None
    return user


def clear_auth_token(user: User, commit: bool = True) -> None:
    user.auth_token_hash = None
    user.auth_token_expires_at = None
    if commit:
        db.session.commit()
