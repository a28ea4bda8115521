import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Any

from realmgate.core.config import settings

logger = logging.getLogger(__name__)

REQUIRED_CLIENT_SMTP_FIELDS = ("host", "port", "username", "password", "from_email")


class EmailDeliveryError(RuntimeError):
    pass


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def missing_smtp_fields(config: dict | None) -> list[str]:
    config = config or {}
    return [field for field in REQUIRED_CLIENT_SMTP_FIELDS if not config.get(field)]


@dataclass
class SmtpProfile:
    host: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    from_email: str | None = None
    secure: bool = False

    @property
    def sender(self) -> str | None:
        return self.from_email or self.username

    @property
    def is_usable(self) -> bool:
        return bool(self.host and self.sender)

    @classmethod
    def from_client_config(cls, config: dict | None) -> "SmtpProfile | None":
        """Build a profile from a client's stored ``smtp_config``.

        Older records carry ``user``/``pass`` or a nested ``auth`` object
        instead of ``username``/``password``; all spellings are accepted.
        Returns None when nothing usable is configured.
        """
        if not config:
            return None
        auth = config.get("auth") if isinstance(config.get("auth"), dict) else {}
        profile = cls(
            host=config.get("host") or "",
            port=int(config.get("port") or 587),
            username=config.get("username") or config.get("user") or auth.get("user"),
            password=config.get("password") or config.get("pass") or auth.get("pass"),
            from_email=config.get("from_email"),
            secure=_as_bool(config.get("secure")),
        )
        return profile if profile.is_usable else None

    @classmethod
    def default(cls) -> "SmtpProfile":
        return cls(
            host=settings.DEFAULT_SMTP_HOST,
            port=settings.DEFAULT_SMTP_PORT,
            username=settings.DEFAULT_SMTP_USER or None,
            password=settings.DEFAULT_SMTP_PASSWORD or None,
            from_email=settings.DEFAULT_SMTP_FROM,
            secure=settings.DEFAULT_SMTP_SECURE,
        )


class EmailDispatcher:
    def __init__(self, default_profile: SmtpProfile, *, timeout: int = 10) -> None:
        self.default_profile = default_profile
        self.timeout = timeout

    def send(self, to_email: str, subject: str, html_body: str, profile: SmtpProfile) -> None:
        if not profile.is_usable:
            raise EmailDeliveryError("SMTP profile is incomplete")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = profile.sender
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if profile.secure:
                server = smtplib.SMTP_SSL(profile.host, profile.port, context=context, timeout=self.timeout)
            else:
                server = smtplib.SMTP(profile.host, profile.port, timeout=self.timeout)
            with server:
                if not profile.secure:
                    server.ehlo()
                    if server.has_extn("starttls"):
                        server.starttls(context=context)
                        server.ehlo()
                if profile.username and profile.password:
                    server.login(profile.username, profile.password)
                server.sendmail(profile.sender, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP delivery via {profile.host}:{profile.port} failed: {exc}") from exc

        logger.info("Email sent to %s via %s", redact_email(to_email), profile.host)

    def send_with_fallback(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        client_profile: SmtpProfile | None = None,
    ) -> bool:
        """Try the client's profile, then the system default. Never raises."""
        attempts = [p for p in (client_profile, self.default_profile) if p is not None]
        for profile in attempts:
            try:
                self.send(to_email, subject, html_body, profile)
                return True
            except EmailDeliveryError as exc:
                logger.warning("Email to %s failed: %s", redact_email(to_email), exc)
        logger.error("Email to %s not delivered (all SMTP profiles failed)", redact_email(to_email))
        return False


def render_otp_email(code: str, purpose: str, ttl_minutes: int) -> tuple[str, str]:
    subject = "Your 2FA verification code" if purpose == "2fa" else "Your password reset code"
    body = f"""
<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <h2>{subject}</h2>
  <p>Use the following one-time code:</p>
  <div style="font-size: 24px; font-weight: bold; letter-spacing: 4px;">{code}</div>
  <p>This code will expire in {ttl_minutes} minutes.</p>
</div>
"""
    return subject, body


def render_welcome_email(*, email: str, first_name: str | None, last_name: str | None, password: str) -> tuple[str, str]:
    subject = "Welcome - your account details"
    name = html.escape(" ".join(p for p in (first_name, last_name) if p) or email)
    body = f"""
<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <h2>Hello {name},</h2>
  <p>Your account has been created. Here are your login credentials:</p>
  <p><strong>Email:</strong> {html.escape(email)}</p>
  <p><strong>Password:</strong> <code>{html.escape(password)}</code></p>
  <p><strong>Important:</strong> please change your password after your first login.</p>
</div>
"""
    return subject, body


@lru_cache
def get_email_dispatcher() -> EmailDispatcher:
    return EmailDispatcher(SmtpProfile.default(), timeout=settings.SMTP_TIMEOUT_SECONDS)
