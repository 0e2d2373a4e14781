from datetime import datetime
from models.db import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)

    # NULL for accounts that only sign in through a provider
    password_hash = db.Column(db.String(255), nullable=True)

    display_name = db.Column(db.String(120), nullable=True)
    first_name = db.Column(db.String(80), nullable=True)
    last_name = db.Column(db.String(80), nullable=True)
    profile_image = db.Column(db.String(512), nullable=True)
    email_verified = db.Column(db.Boolean, default=False, nullable=False)

    # lockout state
    failed_login_count = db.Column(db.Integer, default=0, nullable=False)
    account_locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    # bearer token for API clients, stored hashed
    auth_token_hash = db.Column(db.String(128), unique=True, nullable=True, index=True)
    auth_token_expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    password_changed_at = db.Column(db.DateTime, nullable=True)

    oauth_accounts = db.relationship("OAuthAccount", back_populates="user", lazy=True)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "display_name": self.display_name,
            "email_verified": self.email_verified,
            "has_password": self.has_password,
        }
