from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from campuslink.logging import get_logger

logger = get_logger(__name__)

_HTML_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .button {{ display: inline-block; background: #2563eb; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #5b6470; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{heading}</h1>
        {paragraphs}
        {action}
        <div class="footer">
            <p>{from_name}</p>
            {fallback}
        </div>
    </div>
</body>
</html>
"""


class EmailService:
    """Transactional email for account lifecycle events.

    Sends welcome, password reset and email verification messages over SMTP.
    When SMTP is not configured the message is logged instead (dev mode).
    Every send method returns True on success and False on failure; callers
    decide whether a failure matters.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "CampusLink",
        base_url: Optional[str] = None,
        reset_ttl_minutes: int = 60,
        verification_ttl_hours: int = 24,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:3000").rstrip("/")
        self.reset_ttl_minutes = reset_ttl_minutes
        self.verification_ttl_hours = verification_ttl_hours

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _render(
        self,
        heading: str,
        paragraphs: list[str],
        *,
        action_url: Optional[str] = None,
        action_label: Optional[str] = None,
    ) -> tuple[str, str]:
        html_paragraphs = "\n        ".join(f"<p>{escape(p)}</p>" for p in paragraphs)
        action = ""
        fallback = ""
        if action_url:
            action = (
                f'<p style="margin: 30px 0;"><a href="{escape(action_url)}" '
                f'class="button">{escape(action_label or action_url)}</a></p>'
            )
            fallback = (
                "<p>If the button doesn't work, copy and paste this URL: "
                f"{escape(action_url)}</p>"
            )
        html_body = _HTML_LAYOUT.format(
            heading=escape(heading),
            paragraphs=html_paragraphs,
            action=action,
            from_name=escape(self.from_name),
            fallback=fallback,
        )
        text_parts = [heading, "", *paragraphs]
        if action_url:
            text_parts += ["", action_url]
        text_parts += ["", "---", self.from_name]
        return html_body, "\n".join(text_parts) + "\n"

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send an email via SMTP.

        Returns True if sent successfully, False otherwise.
        """
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
            )
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            if self.smtp_use_tls:
                server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
            else:
                server = smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                )
            with server:
                if self.smtp_use_tls:
                    server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            # Covers connection refused and socket timeouts
            logger.error(
                "email_transport_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def send_welcome(self, to_email: str, first_name: str, role: str) -> bool:
        role_label = "Administrator" if role == "admin" else "Student"
        html_body, text_body = self._render(
            f"Welcome to CampusLink, {first_name}!",
            [
                f"Your {role_label.lower()} account has been created.",
                "You can now read announcements, report lost and found items, "
                "check your timetable and track complaints.",
            ],
            action_url=f"{self.base_url}/login",
            action_label="Sign in",
        )
        return self._send_email(to_email, "Welcome to CampusLink", html_body, text_body)

    def send_password_reset(self, to_email: str, token: str) -> bool:
        reset_url = f"{self.base_url}/reset-password/{token}"
        html_body, text_body = self._render(
            "Reset your password",
            [
                "We received a request to reset your CampusLink password.",
                f"This link will expire in {self.reset_ttl_minutes} minutes.",
                "If you didn't request this, you can safely ignore this email.",
            ],
            action_url=reset_url,
            action_label="Reset Password",
        )
        return self._send_email(
            to_email, "Reset your CampusLink password", html_body, text_body
        )

    def send_email_verification(self, to_email: str, token: str) -> bool:
        verify_url = f"{self.base_url}/verify-email/{token}"
        html_body, text_body = self._render(
            "Verify your email",
            [
                "Please confirm this address belongs to you.",
                f"This link will expire in {self.verification_ttl_hours} hours.",
            ],
            action_url=verify_url,
            action_label="Verify Email",
        )
        return self._send_email(
            to_email, "Verify your CampusLink email", html_body, text_body
        )
