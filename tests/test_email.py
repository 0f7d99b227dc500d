import smtplib

import pytest

from campuslink.service import email as email_module
from campuslink.service.email import EmailService


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, context=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, from_addr, to_addr, message):
        self.sent.append((from_addr, to_addr, message))


class RefusingSMTP(FakeSMTP):
    def sendmail(self, from_addr, to_addr, message):
        raise smtplib.SMTPRecipientsRefused({to_addr: (550, b"no such user")})


@pytest.fixture(autouse=True)
def reset_fake_smtp():
    FakeSMTP.instances = []


@pytest.fixture
def configured():
    return EmailService(
        smtp_host="smtp.campus.edu",
        smtp_user="mailer",
        smtp_password="pw",
        from_email="noreply@campus.edu",
        base_url="https://campuslink.example/",
    )


def test_dev_mode_logs_instead_of_sending(monkeypatch):
    monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
    service = EmailService()
    assert not service.is_configured
    assert service.send_password_reset("student@campus.edu", "abc") is True
    assert FakeSMTP.instances == []


def test_reset_mail_carries_link_and_ttl(monkeypatch, configured):
    monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
    assert configured.send_password_reset("student@campus.edu", "s3cret") is True

    smtp = FakeSMTP.instances[0]
    assert smtp.started_tls
    assert smtp.logged_in == ("mailer", "pw")
    from_addr, to_addr, message = smtp.sent[0]
    assert (from_addr, to_addr) == ("noreply@campus.edu", "student@campus.edu")
    assert "https://campuslink.example/reset-password/s3cret" in message
    assert "60 minutes" in message


def test_verification_mail_link(monkeypatch, configured):
    monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
    configured.send_email_verification("student@campus.edu", "v-token")
    assert "https://campuslink.example/verify-email/v-token" in FakeSMTP.instances[0].sent[0][2]


def test_implicit_tls_uses_smtp_ssl(monkeypatch):
    monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", FakeSMTP)
    service = EmailService(
        smtp_host="smtp.campus.edu", smtp_port=465, smtp_use_tls=False, from_email="a@b.edu"
    )
    assert service.send_welcome("student@campus.edu", "Sam", "student") is True
    assert FakeSMTP.instances[0].started_tls is False


def test_refused_recipient_returns_false(monkeypatch, configured):
    monkeypatch.setattr(email_module.smtplib, "SMTP", RefusingSMTP)
    assert configured.send_password_reset("nobody@campus.edu", "abc") is False


def test_connection_error_returns_false(monkeypatch, configured):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(email_module.smtplib, "SMTP", refuse)
    assert configured.send_welcome("student@campus.edu", "Sam", "student") is False


def test_user_content_is_escaped(configured):
    html_body, text_body = configured._render("Hi <b>", ["<script>x</script>"])
    assert "<script>" not in html_body
    assert "&lt;script&gt;" in html_body
    assert "<script>x</script>" in text_body


def test_redacts_addresses_in_logs(configured):
    assert configured._redact_email("student@campus.edu") == "st***@campus.edu"
    assert configured._redact_email("broken") == "redacted"
