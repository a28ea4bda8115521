import smtplib

import pytest

from realmgate.notifications import email
from realmgate.notifications.email import (
    EmailDeliveryError,
    EmailDispatcher,
    SmtpProfile,
    missing_smtp_fields,
    redact_email,
    render_otp_email,
    render_welcome_email,
)


class _FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, **kwargs):
        self.host = host
        self.port = port
        self.logged_in = None
        self.sent = []
        self.started_tls = False
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, sender, recipients, message):
        self.sent.append((sender, recipients, message))


class _BrokenSMTP(_FakeSMTP):
    def sendmail(self, sender, recipients, message):
        raise smtplib.SMTPServerDisconnected("gone")


@pytest.fixture(autouse=True)
def _reset_fake():
    _FakeSMTP.instances = []


def test_profile_from_client_config_accepts_legacy_keys():
    modern = SmtpProfile.from_client_config(
        {"host": "smtp.acme.com", "port": "465", "username": "u", "password": "p", "from_email": "f@acme.com", "secure": "true"}
    )
    legacy = SmtpProfile.from_client_config({"host": "smtp.acme.com", "auth": {"user": "u@acme.com", "pass": "p"}})

    assert (modern.port, modern.secure, modern.sender) == (465, True, "f@acme.com")
    assert (legacy.username, legacy.password, legacy.sender) == ("u@acme.com", "p", "u@acme.com")
    assert SmtpProfile.from_client_config({}) is None
    assert SmtpProfile.from_client_config({"port": 25}) is None


def test_missing_smtp_fields():
    assert missing_smtp_fields(None) == ["host", "port", "username", "password", "from_email"]
    assert missing_smtp_fields({"host": "h", "port": 25, "username": "u", "password": "p", "from_email": "f"}) == []


def test_send_uses_starttls_and_login(monkeypatch):
    monkeypatch.setattr(email.smtplib, "SMTP", _FakeSMTP)
    dispatcher = EmailDispatcher(SmtpProfile(host="default.acme.com", from_email="d@acme.com"))
    profile = SmtpProfile(host="smtp.acme.com", port=587, username="u", password="p", from_email="f@acme.com")

    dispatcher.send("to@acme.com", "Hi", "<p>hi</p>", profile)

    server = _FakeSMTP.instances[-1]
    assert server.host == "smtp.acme.com"
    assert server.started_tls is True
    assert server.logged_in == ("u", "p")
    sender, recipients, message = server.sent[0]
    assert sender == "f@acme.com"
    assert recipients == ["to@acme.com"]
    assert "Subject: Hi" in message


def test_send_wraps_transport_errors(monkeypatch):
    monkeypatch.setattr(email.smtplib, "SMTP", _BrokenSMTP)
    dispatcher = EmailDispatcher(SmtpProfile(host="default.acme.com", from_email="d@acme.com"))

    with pytest.raises(EmailDeliveryError):
        dispatcher.send("to@acme.com", "Hi", "<p>hi</p>", dispatcher.default_profile)


def test_fallback_tries_client_profile_then_default(monkeypatch):
    dispatcher = EmailDispatcher(SmtpProfile(host="default.acme.com", from_email="d@acme.com"))
    attempts = []

    def fake_send(to_email, subject, html_body, profile):
        attempts.append(profile.host)
        if profile.host == "client.acme.com":
            raise EmailDeliveryError("client relay down")

    monkeypatch.setattr(dispatcher, "send", fake_send)
    client_profile = SmtpProfile(host="client.acme.com", from_email="c@acme.com")

    assert dispatcher.send_with_fallback("to@acme.com", "s", "b", client_profile) is True
    assert attempts == ["client.acme.com", "default.acme.com"]


def test_fallback_reports_failure_without_raising(monkeypatch):
    dispatcher = EmailDispatcher(SmtpProfile(host="default.acme.com", from_email="d@acme.com"))

    def always_fail(*_args, **_kwargs):
        raise EmailDeliveryError("down")

    monkeypatch.setattr(dispatcher, "send", always_fail)

    assert dispatcher.send_with_fallback("to@acme.com", "s", "b") is False


def test_otp_template_mentions_code_and_ttl():
    subject, html = render_otp_email("123456", "reset", 10)

    assert subject == "Your password reset code"
    assert "123456" in html
    assert "10 minutes" in html


def test_redact_email():
    assert redact_email("someone@acme.com") == "so***@acme.com"
    assert redact_email("garbage") == "redacted"


def test_welcome_template_escapes_user_fields():
    _subject, html = render_welcome_email(
        email="eve@acme.com", first_name="<script>", last_name="O'Neil", password="a&b<c"
    )

    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "a&amp;b&lt;c" in html
