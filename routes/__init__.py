from .health import health_bp
from .auth import auth_bp
from .password_reset import reset_bp
from .oauth import oauth_bp
