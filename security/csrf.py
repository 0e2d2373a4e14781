import secrets
from flask import request, current_app

from security.errors import AuthError

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


class CSRFValidationFailed(AuthError):
    status_code = 403
    error_code = "CSRF_FAILED"
    message = "CSRF validation failed"


def issue_csrf_token(resp):
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp


def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        raise CSRFValidationFailed()
