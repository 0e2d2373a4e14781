from flask import Blueprint, request, jsonify

from security.errors import InvalidOrExpiredToken, RateLimited, ValidationError
from security.password_policy import validate_password
from security.password_reset import (
    complete_password_reset,
    request_password_reset,
    validate_reset_token,
)
from security.rate_limit import check_policy, record_attempt, reset_identifier, reset_policy
from utils.audit import log_event
from utils.request_context import client_ip
from utils.user_store import normalize_email

reset_bp = Blueprint("password_reset", __name__, url_prefix="/auth/reset")

REQUEST_ACCEPTED = "If an account exists with that email, a password reset link has been sent."


@reset_bp.post("/request")
def request_reset():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))

    identifier = reset_identifier(email)
    allowed, retry_after = check_policy(identifier, reset_policy())
    if not allowed:
        log_event("PASSWORD_RESET_RATE_LIMIT", metadata={"identifier": identifier, "retry_after": retry_after})
        raise RateLimited(retry_after)

    if not email or "@" not in email or len(email) > 255:
        raise ValidationError("A valid email is required")

    record_attempt(identifier, True, client_ip())
    request_password_reset(email)
    log_event("PASSWORD_RESET_REQUESTED", metadata={"identifier": identifier})

    # same answer whether or not the account exists
    return jsonify(message=REQUEST_ACCEPTED), 200


@reset_bp.get("/validate")
def validate_reset():
    token = request.args.get("token") or ""
    if not token:
        raise ValidationError("Token is required")

    result = validate_reset_token(token)
    if not result.valid:
        return jsonify(valid=False, message=InvalidOrExpiredToken.message), 200

    # username only, never the email
    return jsonify(valid=True, username=result.username), 200


@reset_bp.post("/complete")
def complete_reset():
    data = request.get_json(silent=True) or {}
    token = data.get("token") or ""
    password = data.get("password") or ""

    if not token or not isinstance(token, str):
        raise ValidationError("Token is required")
    valid, errors = validate_password(password)
    if not valid:
        raise ValidationError("Password does not meet policy", details=errors)

    try:
        user_id = complete_password_reset(token, password)
    except InvalidOrExpiredToken:
        log_event("PASSWORD_RESET_INVALID_TOKEN")
        raise

    log_event("PASSWORD_RESET_COMPLETED", user_id=user_id)
    return jsonify(message="Password reset successfully"), 200
