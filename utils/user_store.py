"""
User store port.

The security components read and write users only through these helpers,
so the storage behind them can change without touching the auth flows.
"""

from datetime import datetime

from models import db
from models.user import User


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def get_user(user_id):
    return db.session.get(User, user_id)


def get_user_by_username(username: str):
    if not username:
        return None
    return User.query.filter_by(username=username.strip().lower()).first()


def get_user_by_email(email: str):
    email = normalize_email(email)
    if not email:
        return None
    return User.query.filter_by(email=email).first()


def create_user(username: str, email=None, password_hash=None, commit=True, **profile) -> User:
    user = User(
        username=username,
        email=normalize_email(email) or None,
        password_hash=password_hash,
        password_changed_at=datetime.utcnow() if password_hash else None,
        **profile,
    )
    db.session.add(user)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return user


def update_user_fields(user_id, commit=True, **fields) -> int:
    """UPDATE users SET ... WHERE id = :user_id. Returns the affected row count."""
    fields.setdefault("updated_at", datetime.utcnow())
    count = (
        User.query
        .filter_by(id=user_id)
        .update(fields, synchronize_session="fetch")
    )
    if commit:
        db.session.commit()
    return count
