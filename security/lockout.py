"""
Per-account failed-login counter and lock timer.

Independent of the rate limiter: this gates the *account*, not a request
identifier, and has no window. Store errors propagate (fail closed).
"""

import math
from datetime import datetime, timedelta

from flask import current_app

from models import db
from models.user import User
from utils.log import get_logger
from utils.user_store import update_user_fields

logger = get_logger(__name__)


def _max_attempts() -> int:
    return current_app.config.get("MAX_LOGIN_ATTEMPTS", 5)


def _lock_minutes() -> int:
    return current_app.config.get("LOCKOUT_MINUTES", 30)


def _remaining_seconds(locked_until, now) -> int:
    if not locked_until or locked_until <= now:
        return 0
    return max(int(math.ceil((locked_until - now).total_seconds())), 1)


def is_account_locked(user: User) -> tuple[bool, int]:
    """
    Returns (locked, seconds_remaining).
    An expired lock is cleared here, before answering.
    """
    now = datetime.utcnow()
    locked_until = user.account_locked_until
    if not locked_until:
        return False, 0

    if locked_until > now:
        return True, _remaining_seconds(locked_until, now)

    unlock_account(user)
    logger.info("account_lock_expired", user_id=user.id)
    return False, 0


def lockout_remaining_seconds(user: User) -> int:
    return _remaining_seconds(user.account_locked_until, datetime.utcnow())


def register_failed_login(user: User) -> tuple[int, bool]:
    """
    Increments the failure counter. Returns (fail_count, locked_now)
    """
    now = datetime.utcnow()

    # increment in SQL so concurrent failures are all counted
    update_user_fields(
        user.id,
        commit=False,
        failed_login_count=User.failed_login_count + 1,
    )
    db.session.refresh(user)

    locked_now = False
    if user.failed_login_count >= _max_attempts():
        user.account_locked_until = now + timedelta(minutes=_lock_minutes())
        locked_now = True

    db.session.commit()

    if locked_now:
        logger.warning(
            "account_locked",
            user_id=user.id,
            failed_attempts=user.failed_login_count,
            locked_until=user.account_locked_until.isoformat(),
        )
    return user.failed_login_count, locked_now


def register_successful_login(user: User) -> None:
    user.failed_login_count = 0
    user.account_locked_until = None
    user.last_login_at = datetime.utcnow()
    db.session.commit()


def unlock_account(user: User, commit: bool = True) -> None:
    """Admin unlock, lock expiry and password reset all land here."""
    user.failed_login_count = 0
    user.account_locked_until = None
    if commit:
        db.session.commit()


def account_security_status(user: User) -> dict:
    now = datetime.utcnow()
    locked = bool(user.account_locked_until and user.account_locked_until > now)
    return {
        "failed_attempts": user.failed_login_count or 0,
        "is_locked": locked,
        "locked_until": user.account_locked_until.isoformat() if locked else None,
        "remaining_seconds": _remaining_seconds(user.account_locked_until, now),
    }
