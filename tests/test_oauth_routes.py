from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import pytest

from models.audit_log import AuditLog
from models.oauth_account import OAuthAccount
from models.session import Session
from models.user import User
from security.errors import SessionSaveError
from security.session import _hash_token


def _error_code(resp):
    return parse_qs(urlparse(resp.location).query).get("error", [None])[0]


def _start(client):
    resp = client.get("/auth/oauth/start")
    assert resp.status_code == 302
    return parse_qs(urlparse(resp.location).query)["state"][0]


def _callback(client, **params):
    return client.get("/auth/oauth/callback", query_string=params)


def _stored_session(app, client):
    raw = client.get_cookie("cellar_session").value
    with app.app_context():
        return Session.query.filter_by(token_hash=_hash_token(raw)).one()


def _sign_in_with_google(client):
    state = _start(client)
    return _callback(client, state=state, code="auth-code")


class TestStart:
    def test_configured_flag(self, client, fake_provider):
        assert client.get("/auth/oauth/configured").get_json() == {"configured": True}

        fake_provider.configured = False
        assert client.get("/auth/oauth/configured").get_json() == {"configured": False}

    def test_unconfigured_provider_is_503(self, client, fake_provider):
        fake_provider.configured = False

        resp = client.get("/auth/oauth/start")

        assert resp.status_code == 503
        assert resp.get_json()["error_code"] == "NOT_CONFIGURED"

    def test_state_is_saved_before_redirect(self, app, client, fake_provider):
        state = _start(client)

        assert len(state) >= 32
        sess = _stored_session(app, client)
        assert sess.get("oauth_state") == state
        assert sess.user_id is None

    def test_each_start_issues_a_new_state(self, client, fake_provider):
        assert _start(client) != _start(client)

    def test_session_save_failure_is_500(self, client, fake_provider, monkeypatch):
        def _fail(sess):
            raise SessionSaveError()

        monkeypatch.setattr("routes.oauth.save_session", _fail)

        resp = client.get("/auth/oauth/start")

        assert resp.status_code == 500
        assert resp.get_json()["error_code"] == "SESSION_SAVE_FAILED"


class TestCallback:
    def test_new_user_is_created_and_signed_in(self, app, client, fake_provider):
        resp = _sign_in_with_google(client)

        assert resp.status_code == 302
        assert resp.location == "/"
        assert fake_provider.exchanged_codes == ["auth-code"]

        me = client.get("/auth/me").get_json()
        assert me["user"]["username"] == "caroldanvers"
        assert me["user"]["has_password"] is False

        sess = _stored_session(app, client)
        assert sess.user_id == me["user"]["id"]
        assert sess.get("oauth_state") is None

        with app.app_context():
            actions = [row.action for row in AuditLog.query.order_by(AuditLog.id)]
            assert "OAUTH_USER_CREATED" in actions
            assert actions[-1] == "OAUTH_LOGIN"

    def test_existing_email_is_linked_not_duplicated(self, app, client, fake_provider, make_user):
        carol_id = make_user(username="carol", email="carol@example.com")

        _sign_in_with_google(client)

        assert client.get("/auth/me").get_json()["user"]["id"] == carol_id
        with app.app_context():
            assert User.query.count() == 1
            assert OAuthAccount.query.filter_by(user_id=carol_id).count() == 1

    def test_second_google_identity_for_a_linked_email_is_refused(self, app, fake_provider):
        _sign_in_with_google(app.test_client())

        fake_provider.profile = replace(fake_provider.profile, provider_user_id="google-456")
        other = app.test_client()
        resp = _sign_in_with_google(other)

        assert resp.status_code == 302
        assert _error_code(resp) == "account_already_linked"
        assert other.get("/auth/me").status_code == 401
        with app.app_context():
            assert User.query.count() == 1
            assert [link.provider_user_id for link in OAuthAccount.query.all()] == ["google-123"]

    def test_returning_user_gets_same_account(self, app, fake_provider):
        first = app.test_client()
        _sign_in_with_google(first)
        second = app.test_client()
        _sign_in_with_google(second)

        assert first.get("/auth/me").get_json()["user"]["id"] == second.get("/auth/me").get_json()["user"]["id"]
        with app.app_context():
            assert User.query.count() == 1

    def test_state_mismatch(self, app, client, fake_provider):
        state = _start(client)

        resp = _callback(client, state="forged", code="auth-code")

        assert resp.status_code == 302
        assert urlparse(resp.location).path == "/auth"
        assert _error_code(resp) == "invalid_state"
        assert fake_provider.exchanged_codes == []

        # the stored state was consumed; replaying the real one fails too
        replay = _callback(client, state=state, code="auth-code")
        assert _error_code(replay) == "invalid_state"

        with app.app_context():
            assert AuditLog.query.filter_by(action="OAUTH_STATE_MISMATCH").count() == 2
            assert User.query.count() == 0

    def test_callback_without_session(self, client, fake_provider):
        resp = _callback(client, state="anything", code="auth-code")
        assert _error_code(resp) == "invalid_state"

    def test_provider_denied(self, client, fake_provider):
        state = _start(client)

        resp = _callback(client, state=state, error="access_denied")

        assert _error_code(resp) == "oauth_denied"

    def test_missing_code(self, client, fake_provider):
        state = _start(client)

        resp = _callback(client, state=state)

        assert _error_code(resp) == "no_code"

    def test_token_exchange_failure(self, app, client, fake_provider):
        fake_provider.exchange_error = "invalid_grant"
        state = _start(client)

        resp = _callback(client, state=state, code="auth-code")

        assert _error_code(resp) == "token_exchange_failed"
        with app.app_context():
            assert User.query.count() == 0

    def test_session_save_failure_after_resolution(self, client, fake_provider, monkeypatch):
        state = _start(client)

        def _fail(user_id):
            raise SessionSaveError()

        monkeypatch.setattr("routes.oauth.establish_session", _fail)

        resp = _callback(client, state=state, code="auth-code")

        assert _error_code(resp) == "session_failed"
        assert client.get("/auth/me").status_code == 401

    def test_unexpected_error_is_generic_failure(self, client, fake_provider, monkeypatch):
        state = _start(client)

        def _boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("routes.oauth.resolve_user", _boom)

        resp = _callback(client, state=state, code="auth-code")

        assert _error_code(resp) == "oauth_failed"


class TestLinkedProviders:
    def test_status(self, client, fake_provider, make_user):
        make_user()
        client.post("/auth/login", json={"username": "alice", "password": "OldPass1!"})

        assert client.get("/auth/oauth/status").get_json() == {"google": False}

    def test_status_requires_login(self, client, fake_provider):
        assert client.get("/auth/oauth/status").status_code == 401

    def test_only_login_method_cannot_be_unlinked(self, app, client, fake_provider):
        _sign_in_with_google(client)
        assert client.get("/auth/oauth/status").get_json() == {"google": True}

        resp = client.delete(
            "/auth/oauth/google",
            headers={"X-CSRF-Token": client.get_cookie("csrf_token").value},
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Cannot unlink the only login method. Add a password first."
        with app.app_context():
            assert OAuthAccount.query.count() == 1

    def test_unlink_with_password_on_file(self, app, client, fake_provider, make_user):
        make_user(username="carol", email="carol@example.com")
        _sign_in_with_google(client)

        resp = client.delete(
            "/auth/oauth/google",
            headers={"X-CSRF-Token": client.get_cookie("csrf_token").value},
        )

        assert resp.status_code == 200
        with app.app_context():
            assert OAuthAccount.query.count() == 0
            assert AuditLog.query.filter_by(action="OAUTH_UNLINKED").count() == 1

    def test_unlink_without_csrf_header_is_refused(self, client, fake_provider, make_user):
        make_user(username="carol", email="carol@example.com")
        _sign_in_with_google(client)

        assert client.delete("/auth/oauth/google").status_code == 403

    @pytest.mark.parametrize("provider, status", [("github", 400), ("google", 404)])
    def test_unlink_errors(self, client, fake_provider, make_user, provider, status):
        make_user()
        client.post("/auth/login", json={"username": "alice", "password": "OldPass1!"})

        resp = client.delete(
            f"/auth/oauth/{provider}",
            headers={"X-CSRF-Token": client.get_cookie("csrf_token").value},
        )

        assert resp.status_code == status
