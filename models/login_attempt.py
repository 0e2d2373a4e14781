from datetime import datetime
from models.db import db

class LoginAttempt(db.Model):
    """Append-only attempt log; the rate limiter counts rows per identifier."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    # username, email or client IP, whichever the protected route resolved
    identifier = db.Column(db.String(255), nullable=False)
    success = db.Column(db.Boolean, default=False, nullable=False)
    ip_address = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        db.Index("ix_login_attempts_identifier_created_at", "identifier", "created_at"),
    )
