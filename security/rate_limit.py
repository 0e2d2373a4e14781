import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt
from utils.log import get_logger
from utils.request_context import client_ip

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: int
    max_attempts: int


def login_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        "login",
        current_app.config.get("LOGIN_RATE_WINDOW_SECONDS", 15 * 60),
        current_app.config.get("LOGIN_RATE_MAX_ATTEMPTS", 5),
    )


def reset_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        "password_reset",
        current_app.config.get("RESET_RATE_WINDOW_SECONDS", 60 * 60),
        current_app.config.get("RESET_RATE_MAX_ATTEMPTS", 3),
    )


def login_identifier(username) -> str:
    return (username or "").strip().lower() or client_ip()


def reset_identifier(email) -> str:
    return (email or "").strip().lower() or client_ip()


def check_rate_limit(identifier: str, window_seconds: int, max_attempts: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Sliding window over persisted attempt rows, so every instance sees the same count.
    """
    now = datetime.utcnow()
    window_start = now - timedelta(seconds=window_seconds)

    try:
        count, oldest = (
            db.session.query(func.count(LoginAttempt.id), func.min(LoginAttempt.created_at))
            .filter(
                LoginAttempt.identifier == identifier,
                LoginAttempt.created_at >= window_start,
            )
            .one()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        # fail open: an outage of the attempt log must not take login down with it
        logger.warning("rate_limit_store_unavailable", identifier=identifier, error=str(exc))
        return True, 0

    if count < max_attempts:
        return True, 0

    # seconds until the oldest attempt in the window ages out
    remaining = (oldest + timedelta(seconds=window_seconds) - now).total_seconds()
    retry_after = max(int(math.ceil(remaining)), 1)
    logger.warning(
        "rate_limit_exceeded",
        identifier=identifier,
        attempts=count,
        max_attempts=max_attempts,
        retry_after=retry_after,
    )
    return False, retry_after


def check_policy(identifier: str, policy: RateLimitPolicy) -> tuple[bool, int]:
    return check_rate_limit(identifier, policy.window_seconds, policy.max_attempts)


def record_attempt(identifier: str, success: bool, ip=None) -> None:
    row = LoginAttempt(
        identifier=identifier,
        success=success,
        ip_address=ip,
        created_at=datetime.utcnow(),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("rate_limit_record_failed", identifier=identifier, error=str(exc))


def prune_attempts(max_age_seconds=None) -> int:
    """Delete attempt rows older than max_age_seconds. Returns rows removed."""
    if max_age_seconds is None:
        max_age_seconds = current_app.config.get("LOGIN_ATTEMPT_MAX_AGE_SECONDS", 24 * 60 * 60)
    cutoff = datetime.utcnow() - timedelta(seconds=max_age_seconds)

    removed = (
        LoginAttempt.query
        .filter(LoginAttempt.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return removed
