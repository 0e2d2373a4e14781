import json
from datetime import datetime
from models.db import db

class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)

    # set once the caller signs in; anonymous sessions carry OAuth state
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    # store only hashed token in DB (never store raw token)
    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)
    data_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)

    revoked = db.Column(db.Boolean, default=False, nullable=False)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    @property
    def data(self) -> dict:
        return json.loads(self.data_json) if self.data_json else {}

    def get(self, key, default=None):
        return self.data.get(key, default)

    def set(self, key, value):
        data = self.data
        data[key] = value
        self.data_json = json.dumps(data)

    def pop(self, key, default=None):
        data = self.data
        value = data.pop(key, default)
        self.data_json = json.dumps(data) if data else None
        return value
