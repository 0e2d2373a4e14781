"""
Shared fixtures: an app on in-memory SQLite, a fake OAuth provider and
captured reset emails.
"""

import pytest

from app import create_app
from models import db
from models.user import User
from security.errors import ProviderError
from security.oauth_provider import OAuthProfile
from security.password import hash_password

TEST_ENCRYPTION_KEY = "8f" * 32
TEST_PASSWORD = "OldPass1!"


class FakeProvider:
    """Stands in for Google; no network."""

    name = "google"

    def __init__(self):
        self.configured = True
        self.tokens = {"access_token": "ya29.access", "refresh_token": "1//refresh", "token_type": "Bearer"}
        self.profile = OAuthProfile(
            provider_user_id="google-123",
            email="carol@example.com",
            email_verified=True,
            name="Carol Danvers",
            given_name="Carol",
            family_name="Danvers",
        )
        self.exchange_error = None
        self.exchanged_codes = []

    def is_configured(self):
        return self.configured

    def authorization_url(self, state):
        return f"https://accounts.example.test/o/oauth2/auth?response_type=code&state={state}"

    def exchange_code(self, code):
        if self.exchange_error:
            raise ProviderError(self.exchange_error, code="token_exchange_failed")
        self.exchanged_codes.append(code)
        return dict(self.tokens)

    def fetch_profile(self, access_token):
        return self.profile


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr("security.password.BCRYPT_ROUNDS", 4)


@pytest.fixture
def config_overrides():
    return {}


@pytest.fixture
def app(config_overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "OAUTH_ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
        "GOOGLE_CLIENT_ID": "client-id",
        "GOOGLE_CLIENT_SECRET": "client-secret",
        "GOOGLE_CALLBACK_URL": "http://localhost/auth/oauth/callback",
        "APP_URL": "https://cellar.example.test",
        "SMTP_HOST": None,
        "EMAIL_SEND_EAGER": True,
    }
    config.update(config_overrides)
    app = create_app(config)

    with app.app_context():
        db.create_all()

    yield app

    app.extensions["email_outbox"].flush(timeout=5)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def request_ctx(app):
    """App + request context for calling security helpers directly."""
    with app.test_request_context("/", environ_base={"REMOTE_ADDR": "203.0.113.7"}):
        yield
        db.session.rollback()


@pytest.fixture
def fake_provider(app):
    provider = FakeProvider()
    app.extensions["oauth_providers"]["google"] = provider
    return provider


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def _send(to_email, username, reset_url, ttl_minutes=60):
        sent.append({"to": to_email, "username": username, "reset_url": reset_url})
        return True, None

    monkeypatch.setattr("security.password_reset.send_password_reset_email", _send)
    return sent


@pytest.fixture
def make_user(app):
    def _make(username="alice", email="a@x.com", password=TEST_PASSWORD, **fields):
        with app.app_context():
            user = User(
                username=username,
                email=email,
                password_hash=hash_password(password) if password else None,
                **fields,
            )
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make
