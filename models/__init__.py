from .db import db
from .user import User
from .audit_log import AuditLog
from .session import Session
from .login_attempt import LoginAttempt
from .password_reset_token import PasswordResetToken
from .oauth_account import OAuthAccount
