from flask import Flask, request, g, jsonify
from config import Config
from routes import health_bp, auth_bp, reset_bp, oauth_bp

from models import db
from flask_migrate import Migrate
from utils.auth_context import load_current_user
from utils.emailer import init_email_outbox
from utils.log import get_logger, setup_logging
from security.csrf import require_csrf
from security.errors import AuthError, RateLimited
from security.oauth_provider import init_oauth_providers
from security.session import apply_session_cookie
from security.token_crypto import init_token_cipher

logger = get_logger(__name__)


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"), app.config.get("LOG_FORMAT", "console"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(reset_bp)
    app.register_blueprint(oauth_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Process-wide collaborators, built once
    init_token_cipher(app, logger)
    init_oauth_providers(app)
    init_email_outbox(app)

    @app.before_request
    def _load_user():
        load_current_user()

    CSRF_EXEMPT_PATHS = {
        "/auth/login",
        "/auth/register",
        "/auth/reset/request",
        "/auth/reset/complete",
        "/health",
    }

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Exempt auth bootstrap endpoints
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Only cookie sessions need it; bearer-token clients are not exposed to CSRF
            sess = getattr(g, "session", None)
            if getattr(g, "user", None) is not None and sess is not None and sess.user_id is not None:
                require_csrf()

    @app.errorhandler(AuthError)
    def _auth_error(exc):
        resp = jsonify(exc.to_dict())
        if isinstance(exc, RateLimited):
            resp.headers["Retry-After"] = str(exc.retry_after)
        return resp, exc.status_code

    @app.after_request
    def _session_cookie(resp):
        return apply_session_cookie(resp)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from security.lockout import unlock_account
from security.password_reset import purge_expired_reset_tokens
from security.rate_limit import prune_attempts
from security.session import purge_stale_sessions
from utils.user_store import get_user_by_username

def register_cli(app):
    @app.cli.command("sweep-auth")
    @click.option("--max-age-seconds", type=int, default=None,
                  help="Age after which login attempts and anonymous sessions are deleted.")
    def sweep_auth(max_age_seconds):
        """Delete dead reset tokens, aged-out login attempts and stale sessions."""
        tokens = purge_expired_reset_tokens()
        attempts = prune_attempts(max_age_seconds)
        sessions = purge_stale_sessions(max_age_seconds)
        logger.info(
            "auth_sweep_finished", reset_tokens=tokens, login_attempts=attempts, sessions=sessions
        )
        click.echo(f"Removed {tokens} reset tokens, {attempts} login attempts and {sessions} sessions")

    @app.cli.command("unlock-account")
    @click.argument("username")
    def unlock(username):
        """Clear the failed-login counter and lock for a user."""
        user = get_user_by_username(username)
        if not user:
            click.echo("User not found")
            return
        unlock_account(user)
        click.echo(f"{user.username} unlocked")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5000)
