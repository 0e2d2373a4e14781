from datetime import datetime
from models.db import db


class OAuthAccount(db.Model):
    __tablename__ = "oauth_accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = db.Column(db.String(30), nullable=False)
    provider_user_id = db.Column(db.String(255), nullable=False)
    provider_email = db.Column(db.String(255), nullable=True)

    # encrypted envelopes (see security.token_crypto)
    access_token = db.Column(db.Text, nullable=True)
    refresh_token = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", back_populates="oauth_accounts")

    __table_args__ = (
        # one local account per external identity
        db.UniqueConstraint("provider", "provider_user_id", name="uq_oauth_provider_identity"),
        # one link per provider per user
        db.UniqueConstraint("user_id", "provider", name="uq_oauth_user_provider"),
    )
