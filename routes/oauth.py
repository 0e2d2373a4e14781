import secrets
from urllib.parse import urlencode

from flask import Blueprint, current_app, g, jsonify, redirect, request

from models import db
from security.csrf import issue_csrf_token
from security.errors import (
    ConfigurationError,
    CSRFMismatch,
    OAuthCallbackError,
    SessionSaveError,
)
from security.federation import (
    RESOLVED_CREATED,
    RESOLVED_LINKED,
    oauth_status,
    resolve_user,
    unlink_provider,
)
from security.oauth_provider import configured_providers, get_provider
from security.session import current_session, establish_session, save_session
from utils.audit import log_event
from utils.auth_context import login_required
from utils.log import get_logger

logger = get_logger(__name__)

oauth_bp = Blueprint("oauth", __name__, url_prefix="/auth/oauth")

DEFAULT_PROVIDER = "google"
STATE_KEY = "oauth_state"


def _failure(code: str):
    target = current_app.config.get("OAUTH_FAILURE_REDIRECT", "/auth")
    return redirect(f"{target}?{urlencode({'error': code})}")


def _provider_or_503():
    provider = get_provider(DEFAULT_PROVIDER)
    if provider is None or not provider.is_configured():
        raise ConfigurationError("Google OAuth is not configured")
    return provider


@oauth_bp.get("/configured")
def configured():
    provider = get_provider(DEFAULT_PROVIDER)
    return jsonify(configured=bool(provider and provider.is_configured())), 200


@oauth_bp.get("/start")
def start():
    provider = _provider_or_503()

    state = secrets.token_urlsafe(32)
    sess = current_session()
    sess.set(STATE_KEY, state)

    # the state must be stored before the browser can come back with it
    try:
        save_session(sess)
    except SessionSaveError:
        return jsonify(error="Failed to initiate OAuth", error_code=SessionSaveError.error_code), 500

    return redirect(provider.authorization_url(state))


def _consume_state():
    """Pops the stored state. Runs on every callback so a state is never reusable."""
    sess = getattr(g, "session", None)
    if sess is None:
        return None
    expected = sess.pop(STATE_KEY)
    save_session(sess)
    return expected


@oauth_bp.get("/callback")
def callback():
    provider = get_provider(DEFAULT_PROVIDER)
    error = request.args.get("error")
    state = request.args.get("state")
    code = request.args.get("code")

    try:
        expected = _consume_state()
    except SessionSaveError:
        return _failure("session_failed")

    try:
        if error:
            logger.warning("oauth_provider_error", provider=DEFAULT_PROVIDER, error=error)
            raise OAuthCallbackError(error, code="oauth_denied")

        if not state or not expected or not secrets.compare_digest(state, expected):
            log_event("OAUTH_STATE_MISMATCH", metadata={"provider": DEFAULT_PROVIDER, "state_present": bool(state)})
            raise CSRFMismatch("state mismatch")

        if not code:
            raise OAuthCallbackError("no code", code="no_code")

        if provider is None or not provider.is_configured():
            raise OAuthCallbackError("provider not configured", code="not_configured")

        tokens = provider.exchange_code(code)
        profile = provider.fetch_profile(tokens["access_token"])
        logger.info("oauth_profile_received", provider=DEFAULT_PROVIDER, provider_user_id=profile.provider_user_id)

        user, outcome = resolve_user(DEFAULT_PROVIDER, profile, tokens)
    except OAuthCallbackError as exc:
        logger.warning("oauth_callback_failed", provider=DEFAULT_PROVIDER, code=exc.code, detail=exc.detail)
        return _failure(exc.code)
    except Exception:
        db.session.rollback()
        logger.exception("oauth_callback_error", provider=DEFAULT_PROVIDER)
        return _failure("oauth_failed")

    if outcome == RESOLVED_CREATED:
        log_event("OAUTH_USER_CREATED", user_id=user.id, metadata={"provider": DEFAULT_PROVIDER})
    elif outcome == RESOLVED_LINKED:
        log_event("OAUTH_LINKED", user_id=user.id, metadata={"provider": DEFAULT_PROVIDER})

    try:
        establish_session(user.id)
    except SessionSaveError:
        return _failure("session_failed")

    log_event("OAUTH_LOGIN", user_id=user.id, metadata={"provider": DEFAULT_PROVIDER})
    resp = redirect(current_app.config.get("OAUTH_SUCCESS_REDIRECT", "/"))
    return issue_csrf_token(resp)


@oauth_bp.get("/status")
@login_required
def status():
    return jsonify(oauth_status(g.user, configured_providers())), 200


@oauth_bp.delete("/<provider>")
@login_required
def unlink(provider):
    unlink_provider(g.user, provider, current_app.extensions["oauth_providers"])
    log_event("OAUTH_UNLINKED", user_id=g.user.id, metadata={"provider": provider})
    return jsonify(message="Provider unlinked successfully"), 200
