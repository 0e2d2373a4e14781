import smtplib
import threading

import pytest
from flask import current_app

from security.password import hash_password, verify_password
from security.password_policy import validate_password
from utils.emailer import EmailOutbox, send_password_reset_email


class TestPolicy:
    def test_strong_password_passes(self):
        assert validate_password("OldPass1!") == (True, [])

    @pytest.mark.parametrize(
        "password, fragment",
        [
            ("Sh0rt!", "at least 8"),
            ("alllower1!", "uppercase"),
            ("ALLUPPER1!", "lowercase"),
            ("NoDigits!!", "number"),
            ("NoSymbol12", "symbol"),
            ("Aa1!" + "x" * 80, "at most 72"),
        ],
    )
    def test_each_rule_reports_its_own_error(self, password, fragment):
        valid, errors = validate_password(password)

        assert valid is False
        assert any(fragment in e for e in errors)

    def test_multibyte_password_is_capped_by_bytes(self):
        valid, errors = validate_password("Aa1!" + "é" * 40)

        assert valid is False
        assert any("bytes" in e for e in errors)

    def test_non_string(self):
        assert validate_password(None) == (False, ["Password must be a string"])


class TestHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("OldPass1!")

        assert hashed.startswith("$2")
        assert verify_password("OldPass1!", hashed)
        assert not verify_password("oldpass1!", hashed)

    def test_missing_hash_never_verifies(self):
        assert verify_password("OldPass1!", None) is False
        assert verify_password("", "$2b$04$abc") is False

    def test_garbage_hash_does_not_raise(self):
        assert verify_password("OldPass1!", "not-a-bcrypt-hash") is False


@pytest.mark.usefixtures("request_ctx")
class TestResetEmail:
    def test_not_configured(self):
        ok, error = send_password_reset_email("a@x.com", "alice", "https://x/reset?token=t")

        assert ok is False
        assert error == "Email not configured"

    def test_sends_link_and_expiry(self, app, monkeypatch):
        app.config.update(SMTP_HOST="smtp.example.test", SMTP_FROM_EMAIL="no-reply@example.test", SMTP_USE_TLS=False)
        sent = []

        class _FakeSMTP:
            def __init__(self, host, port, timeout=None):
                self.host = host

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def send_message(self, msg):
                sent.append(msg)

        monkeypatch.setattr(smtplib, "SMTP", _FakeSMTP)

        ok, error = send_password_reset_email(
            "a@x.com", "alice", "https://cellar.example.test/reset-password?token=abc", ttl_minutes=60
        )

        assert (ok, error) == (True, None)
        body = sent[0].get_content()
        assert sent[0]["To"] == "a@x.com"
        assert "Hi alice" in body
        assert "https://cellar.example.test/reset-password?token=abc" in body
        assert "60 minutes" in body

    def test_smtp_failure_is_reported(self, app, monkeypatch):
        app.config.update(SMTP_HOST="smtp.example.test", SMTP_FROM_EMAIL="no-reply@example.test")

        def _refuse(*args, **kwargs):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(smtplib, "SMTP", _refuse)

        ok, error = send_password_reset_email("a@x.com", "alice", "https://x/reset")

        assert ok is False
        assert "refused" in error


class TestOutbox:
    def test_jobs_run_on_a_worker_thread(self, app):
        seen = []

        def _send(to_email):
            seen.append((to_email, threading.current_thread().name, current_app.name))
            return True, None

        outbox = EmailOutbox(app, max_workers=1)
        future = outbox.submit(_send, "a@x.com")
        outbox.flush(timeout=5)

        assert future.result() == (True, None)
        to_email, thread_name, app_name = seen[0]
        assert to_email == "a@x.com"
        assert thread_name.startswith("email")
        assert app_name == app.name

    def test_failures_are_reported_not_raised(self, app):
        def _broken(to_email):
            raise smtplib.SMTPServerDisconnected("gone")

        outbox = EmailOutbox(app, max_workers=1)
        future = outbox.submit(_broken, "a@x.com")
        outbox.flush(timeout=5)

        assert future.result() == (False, "crashed")

    def test_eager_mode_runs_inline(self, app):
        outbox = EmailOutbox(app, eager=True)

        future = outbox.submit(lambda to_email: (False, "Email not configured"), "a@x.com")

        assert future.done()
        assert future.result() == (False, "Email not configured")
