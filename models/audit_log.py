import json
from datetime import datetime
from models.db import db


class AuditLog(db.Model):
    """Security event trail. Rows are append-only."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    # NULL for events before an account is known (rate limits, unknown usernames, state mismatches)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(80), nullable=False, index=True)  # LOGIN_FAIL, OAUTH_LINKED, ...
    entity = db.Column(db.String(80), nullable=True)
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    @property
    def details(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}
