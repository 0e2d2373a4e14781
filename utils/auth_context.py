from functools import wraps

from flask import g, request

from security.auth_token import get_user_by_auth_token
from security.errors import AuthenticationRequired
from security.session import get_session_from_request
from utils.user_store import get_user


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def load_current_user():
    g.user = None
    g.session = get_session_from_request()

    if g.session is not None and g.session.user_id is not None:
        g.user = get_user(g.session.user_id)
        if g.user is not None:
            return

    # API clients authenticate with the bearer token issued at login
    g.user = get_user_by_auth_token(_bearer_token())


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            raise AuthenticationRequired()
        return fn(*args, **kwargs)
    return wrapper
