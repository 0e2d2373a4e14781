"""
Auth error taxonomy.

Routes raise these; ``app.create_app`` registers one handler that renders
them as ``{"error": ..., "error_code": ..., **context}`` with the right
status code. Client-facing messages stay generic on purpose: the detail
needed to investigate abuse goes to the logs and the audit trail.
"""

from typing import Any


class AuthError(Exception):
    status_code = 400
    error_code = "AUTH_ERROR"
    message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.error_code, **self.context}


class ConfigurationError(AuthError):
    """Feature unavailable (e.g. OAuth provider not configured). Not retryable."""

    status_code = 503
    error_code = "NOT_CONFIGURED"
    message = "Feature is not configured"


class ValidationError(AuthError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    message = "Validation error"

    def __init__(self, message: str | None = None, details: list[str] | None = None):
        super().__init__(message, context={"details": details} if details else None)


class RateLimited(AuthError):
    status_code = 429
    error_code = "RATE_LIMITED"
    message = "Too many attempts. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message, context={"retry_after_seconds": retry_after})


class AccountLocked(AuthError):
    status_code = 423
    error_code = "ACCOUNT_LOCKED"
    message = "Account temporarily locked. Try again later."

    def __init__(self, remaining_seconds: int, message: str | None = None):
        self.remaining_seconds = remaining_seconds
        super().__init__(message, context={"retry_after_seconds": remaining_seconds})


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "INVALID_CREDENTIALS"
    message = "Invalid username or password"


class AuthenticationRequired(AuthError):
    status_code = 401
    error_code = "AUTHENTICATION_REQUIRED"
    message = "Authentication required"


class InvalidOrExpiredToken(AuthError):
    status_code = 400
    error_code = "INVALID_OR_EXPIRED_TOKEN"
    message = "Invalid or expired reset token"


class NotFound(AuthError):
    status_code = 404
    error_code = "NOT_FOUND"
    message = "Not found"


class UnlinkRefused(AuthError):
    status_code = 400
    error_code = "LAST_LOGIN_METHOD"
    message = "Cannot unlink the only login method. Add a password first."


class SessionSaveError(AuthError):
    status_code = 500
    error_code = "SESSION_SAVE_FAILED"
    message = "Session creation failed"


class TokenDecryptionError(AuthError):
    """A well-formed envelope failed authentication under the configured key."""

    status_code = 500
    error_code = "TOKEN_DECRYPTION_FAILED"
    message = "Stored token could not be decrypted"


class OAuthCallbackError(Exception):
    """
    OAuth callback failure. Never rendered as JSON: the callback route turns
    it into a redirect to the failure location with ``?error=<code>``.
    """

    code = "oauth_failed"

    def __init__(self, detail: str | None = None, code: str | None = None):
        self.detail = detail
        if code:
            self.code = code
        super().__init__(detail or self.code)


class CSRFMismatch(OAuthCallbackError):
    code = "invalid_state"


class ProviderError(OAuthCallbackError):
    code = "oauth_failed"
