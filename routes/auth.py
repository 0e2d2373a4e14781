import re

from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from models import db
from security.auth_token import issue_auth_token, clear_auth_token
from security.csrf import issue_csrf_token
from security.errors import (
    AccountLocked,
    InvalidCredentials,
    RateLimited,
    ValidationError,
)
from security.lockout import (
    account_security_status,
    is_account_locked,
    register_failed_login,
    register_successful_login,
)
from security.password import hash_password, verify_password
from security.password_policy import validate_password
from security.rate_limit import check_policy, login_identifier, login_policy, record_attempt
from security.session import clear_session_cookie, establish_session, revoke_session
from utils.audit import log_event
from utils.auth_context import login_required
from utils.request_context import client_ip
from utils.user_store import create_user, get_user_by_email, get_user_by_username, normalize_email


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

_USERNAME = re.compile(r"^[a-z0-9_]{3,64}$")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip().lower()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    display_name = (data.get("display_name") or "").strip() or None

    if not _USERNAME.match(username):
        raise ValidationError("Invalid username", details=["3-64 characters: a-z, 0-9 and _"])
    if email and not _is_valid_email(email):
        raise ValidationError("Invalid email")
    valid, errors = validate_password(password)
    if not valid:
        raise ValidationError("Password does not meet policy", details=errors)

    if get_user_by_username(username):
        log_event("REGISTER_FAIL_USERNAME_EXISTS", metadata={"username": username})
        raise ValidationError("Username already exists")
    if email and get_user_by_email(email):
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        raise ValidationError("Email already in use")

    try:
        user = create_user(
            username=username,
            email=email or None,
            password_hash=hash_password(password),
            display_name=display_name,
        )
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Username or email already in use")

    log_event("REGISTER_SUCCESS", user_id=user.id)
    establish_session(user.id)
    token = issue_auth_token(user)

    resp = jsonify(user=user.to_public_dict(), token=token)
    resp = issue_csrf_token(resp)
    return resp, 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip().lower()
    password = data.get("password") or ""
    ip = client_ip()

    # reject fast on abuse, before touching the account
    identifier = login_identifier(username)
    allowed, retry_after = check_policy(identifier, login_policy())
    if not allowed:
        log_event("LOGIN_RATE_LIMIT", metadata={"identifier": identifier, "retry_after": retry_after})
        raise RateLimited(retry_after)

    if not username or not password:
        raise ValidationError("Username and password are required")

    user = get_user_by_username(username)

    if user is not None:
        locked, seconds_left = is_account_locked(user)
        if locked:
            record_attempt(identifier, False, ip)
            log_event("LOGIN_LOCKED", user_id=user.id, metadata={"seconds_left": seconds_left})
            minutes = -(-seconds_left // 60)
            raise AccountLocked(
                seconds_left,
                message=f"Account temporarily locked. Try again in {minutes} minute{'s' if minutes != 1 else ''}.",
            )

    if user is None or not verify_password(password, user.password_hash):
        record_attempt(identifier, False, ip)

        fail_count, locked_now = (0, False)
        if user is not None:
            fail_count, locked_now = register_failed_login(user)

        log_event(
            "LOGIN_FAIL",
            user_id=user.id if user else None,
            metadata={"username": username, "fail_count": fail_count, "locked_now": locked_now},
        )
        if locked_now:
            log_event("ACCOUNT_LOCKED", user_id=user.id, entity="user", entity_id=user.id)
            lock_minutes = current_app.config.get("LOCKOUT_MINUTES", 30)
            raise AccountLocked(
                lock_minutes * 60,
                message=f"Too many failed attempts. Account temporarily locked for {lock_minutes} minutes.",
            )
        raise InvalidCredentials()

    register_successful_login(user)
    record_attempt(identifier, True, ip)

    establish_session(user.id)
    token = issue_auth_token(user)

    resp = jsonify(user=user.to_public_dict(), token=token)
    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        user=g.user.to_public_dict(),
        security=account_security_status(g.user),
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "cellar_session")
    revoke_session(request.cookies.get(cookie_name))
    clear_auth_token(g.user)
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out successfully")
    return clear_session_cookie(resp), 200
