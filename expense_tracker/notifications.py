"""Outbound notifications (password reset links)."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends notification mails via SMTP.

    With no SMTP host configured the notifier runs in development mode and
    only logs the link it would have sent.
    """

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_username: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "Expense Tracker",
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self.enabled = bool(self.smtp_host and self.from_email)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_username=settings.smtp_username,
            smtp_password=settings.smtp_password,
            from_email=settings.smtp_from_email,
        )

    def send_password_reset(self, to_email: str, reset_url: str) -> None:
        """Send the reset link to ``to_email``; raises UpstreamError on failure."""
        if not self.enabled:
            # the link is a live credential; only show it with debug logging on
            logger.warning("SMTP not configured; password reset email for %s not sent", to_email)
            logger.debug("Password reset link for %s: %s", to_email, reset_url)
            return

        subject = "Password Reset"
        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif;">
                <p>We received a request to reset the password of your Expense Tracker account.</p>
                <p><a href="{reset_url}">Click to Reset Password</a></p>
                <p>If you did not ask for this, you can ignore this email.</p>
            </body>
        </html>
        """
        text_body = (
            "We received a request to reset the password of your Expense Tracker account.\n\n"
            f"Open this link to choose a new password:\n{reset_url}\n\n"
            "If you did not ask for this, you can ignore this email.\n"
        )
        self._send_email(to_email, subject, html_body, text_body)

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                if self.smtp_username:
                    server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to_email, exc)
            raise UpstreamError("failed to send notification") from exc
        logger.info("Sent '%s' email to %s", subject, to_email)
