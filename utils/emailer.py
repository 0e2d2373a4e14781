import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from email.message import EmailMessage

from flask import current_app

from utils.log import get_logger

logger = get_logger(__name__)


def send_email(to_email: str, subject: str, body: str):
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        logger.warning("email_not_configured", to=to_email, subject=subject)
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("email_send_failed", to=to_email, subject=subject, error=str(exc))
        return False, str(exc)


def send_password_reset_email(to_email: str, username: str, reset_url: str, ttl_minutes: int = 60):
    body = (
        f"Hi {username},\n\n"
        "We received a request to reset your password. "
        "Visit the following link to choose a new one:\n\n"
        f"{reset_url}\n\n"
        f"This link will expire in {ttl_minutes} minutes. "
        "If you didn't request a password reset, you can safely ignore this email.\n"
    )
    return send_email(to_email, "Reset your password", body)


class EmailOutbox:
    """
    Sends mail on a small worker pool so SMTP latency never shows up in the
    request that asked for it. Each job runs inside its own app context.
    With ``EMAIL_SEND_EAGER`` set, jobs run inline (tests, CLI scripts).
    """

    def __init__(self, app, max_workers: int = 2, eager: bool = False):
        self._app = app
        self._eager = eager
        self._executor = None if eager else ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="email",
        )
        self._pending = set()
        self._lock = threading.Lock()

    def _run(self, send, args, kwargs):
        with self._app.app_context():
            try:
                ok, error = send(*args, **kwargs)
            except Exception:
                logger.exception("email_job_crashed", job=getattr(send, "__name__", repr(send)))
                return False, "crashed"
            if not ok:
                logger.warning("email_job_failed", job=getattr(send, "__name__", repr(send)), error=error)
            return ok, error

    def submit(self, send, *args, **kwargs) -> Future:
        if self._eager:
            future = Future()
            future.set_result(self._run(send, args, kwargs))
            return future

        future = self._executor.submit(self._run, send, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future):
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout=None) -> None:
        """Block until every queued job has finished."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)


def init_email_outbox(app) -> EmailOutbox:
    outbox = EmailOutbox(
        app,
        max_workers=app.config.get("EMAIL_WORKERS", 2),
        eager=app.config.get("EMAIL_SEND_EAGER", False),
    )
    app.extensions["email_outbox"] = outbox
    return outbox


def queue_email(send, *args, **kwargs) -> Future:
    """Hand a send function and its arguments to the app's outbox."""
    return current_app.extensions["email_outbox"].submit(send, *args, **kwargs)
