import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as cellar_auth.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "cellar_auth.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public base URL, used to build password reset links
    APP_URL = os.getenv("APP_URL", "http://localhost:5000")

    # Session cookie name for the server-side session bag
    AUTH_COOKIE_NAME = "cellar_session"

    # 30 days session lifetime
    SESSION_LIFETIME_SECONDS = 30 * 24 * 60 * 60

    # Idle timeout: 7 days
    IDLE_TIMEOUT_SECONDS = 7 * 24 * 60 * 60

    # Cookieless OAuth starts leave anonymous rows behind; sweep-auth drops them after this
    ANON_SESSION_MAX_AGE_SECONDS = 60 * 60

    # Bearer token issued on login for API clients
    AUTH_TOKEN_LIFETIME_SECONDS = 30 * 24 * 60 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE")  # set True when using HTTPS

    # Account lockout (per user)
    MAX_LOGIN_ATTEMPTS = 5
    LOCKOUT_MINUTES = 30

    # Sliding-window rate limits (per username/email/IP)
    LOGIN_RATE_WINDOW_SECONDS = 15 * 60
    LOGIN_RATE_MAX_ATTEMPTS = 5
    RESET_RATE_WINDOW_SECONDS = 60 * 60
    RESET_RATE_MAX_ATTEMPTS = 3

    # Attempt rows older than this are removed by the sweep
    LOGIN_ATTEMPT_MAX_AGE_SECONDS = 24 * 60 * 60

    # Password reset
    RESET_TOKEN_TTL_SECONDS = 60 * 60

    # Password policy
    PASSWORD_MIN_LEN = 8
    PASSWORD_MAX_LEN = 72

    # Google OAuth
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_CALLBACK_URL = os.getenv("GOOGLE_CALLBACK_URL")
    OAUTH_SUCCESS_REDIRECT = os.getenv("OAUTH_SUCCESS_REDIRECT", "/")
    OAUTH_FAILURE_REDIRECT = os.getenv("OAUTH_FAILURE_REDIRECT", "/auth")

    # AES-256-GCM key for provider tokens at rest (64 hex chars)
    OAUTH_ENCRYPTION_KEY = os.getenv("OAUTH_ENCRYPTION_KEY")
    # Refuse to start without a key instead of storing tokens in clear text
    REQUIRE_TOKEN_ENCRYPTION = _env_bool("REQUIRE_TOKEN_ENCRYPTION")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    # Outgoing mail is sent by a worker pool; eager runs it inline instead
    EMAIL_WORKERS = int(os.getenv("EMAIL_WORKERS", "2"))
    EMAIL_SEND_EAGER = _env_bool("EMAIL_SEND_EAGER")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "console")  # console | json

    # Basic app settings
    DEBUG = False
