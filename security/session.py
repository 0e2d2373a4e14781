import hashlib
import secrets
from datetime import datetime, timedelta

from flask import current_app, g, request
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.session import Session
from security.errors import SessionSaveError
from utils.log import get_logger
from utils.request_context import client_ip, user_agent

logger = get_logger(__name__)


def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "cellar_session")


def _new_session(user_id=None) -> Session:
    """
    Builds an unsaved session row. The RAW token is kept on ``g`` until
    the row is saved and the cookie can be set; only the hash goes to the DB.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 30 * 24 * 60 * 60)
    now = datetime.utcnow()

    sess = Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(seconds=lifetime),
        ip=client_ip(),
        user_agent=user_agent(),
    )
    g.pending_session_token = raw_token
    return sess


def get_session_from_request():
    raw_token = request.cookies.get(_cookie_name())
    if not raw_token:
        return None

    token_hash = _hash_token(raw_token)
    now = datetime.utcnow()

    sess = (
        Session.query
        .filter_by(token_hash=token_hash, revoked=False)
        .first()
    )
    if not sess:
        return None

    # Absolute expiry
    if sess.expires_at <= now:
        return None

    # Idle timeout
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 7 * 24 * 60 * 60)
    last_seen = sess.last_seen_at or sess.created_at
    if (last_seen + timedelta(seconds=idle_seconds)) <= now:
        return None

    # Update activity timestamp (touch)
    sess.last_seen_at = now
    db.session.commit()

    return sess


def current_session() -> Session:
    """The caller's session bag, created lazily. Not persisted until saved."""
    sess = getattr(g, "session", None)
    if sess is None:
        sess = _new_session()
        g.session = sess
    return sess


def save_session(sess: Session) -> None:
    """
    Durably persists the bag. Callers that redirect on the strength of the
    session must call this first; a failure raises SessionSaveError.
    """
    try:
        db.session.add(sess)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("session_save_failed", session_id=sess.id, error=str(exc))
        raise SessionSaveError() from exc

    pending = getattr(g, "pending_session_token", None)
    if pending:
        g.set_session_cookie = pending
        g.pending_session_token = None


def establish_session(user_id: int) -> Session:
    """
    Signs the caller in on a fresh session (rotating away any anonymous one)
    and saves it before returning.
    """
    old = getattr(g, "session", None)
    if old is not None and old.id is not None:
        old.revoked = True

    sess = _new_session(user_id=user_id)
    g.session = sess
    save_session(sess)
    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    token_hash = _hash_token(raw_token)
    sess = Session.query.filter_by(token_hash=token_hash).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True


def revoke_all_sessions(user_id: int, commit: bool = True) -> int:
    count = (
        Session.query
        .filter_by(user_id=user_id, revoked=False)
        .update({"revoked": True}, synchronize_session="fetch")
    )
    if commit:
        db.session.commit()
    return count


def apply_session_cookie(resp):
    """after_request hook: hand the raw token of a newly saved session to the client."""
    raw_token = getattr(g, "set_session_cookie", None)
    if raw_token:
        resp.set_cookie(
            _cookie_name(),
            raw_token,
            httponly=True,
            secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
            samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
            max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 30 * 24 * 60 * 60),
            path="/",
        )
    return resp


def clear_session_cookie(resp):
    resp.delete_cookie(_cookie_name(), path="/")
    return resp


def purge_stale_sessions(anonymous_max_age_seconds=None) -> int:
    """
    Deletes sessions that can never be used again (expired, idle past the
    timeout, revoked) and anonymous bags older than the anonymous TTL.
    Returns rows removed.
    """
    if anonymous_max_age_seconds is None:
        anonymous_max_age_seconds = current_app.config.get("ANON_SESSION_MAX_AGE_SECONDS", 60 * 60)
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 7 * 24 * 60 * 60)
    now = datetime.utcnow()

    removed = (
        Session.query
        .filter(or_(
            Session.expires_at <= now,
            Session.revoked.is_(True),
            Session.last_seen_at <= now - timedelta(seconds=idle_seconds),
            and_(
                Session.user_id.is_(None),
                Session.created_at <= now - timedelta(seconds=anonymous_max_age_seconds),
            ),
        ))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return removed
