"""
Outbound email over SMTP.

smtplib is blocking, so sends run in the threadpool. With no SMTP_HOST
configured (local development) the message is logged instead of sent.
"""
import logging
import smtplib
import ssl
from email.message import EmailMessage

from fastapi.concurrency import run_in_threadpool

from storefront.core.config import Settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _deliver(self, msg: EmailMessage) -> None:
        s = self.settings
        if s.SMTP_SECURE:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(s.SMTP_HOST, s.SMTP_PORT, context=context, timeout=30)
        else:
            server = smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT, timeout=30)
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=ssl.create_default_context())
        try:
            if s.SMTP_USER and s.SMTP_PASS:
                server.login(s.SMTP_USER, s.SMTP_PASS)
            server.send_message(msg)
        finally:
            server.quit()

    async def send(self, to_email: str, subject: str, body_html: str) -> None:
        if not self.settings.SMTP_HOST:
            logger.warning("SMTP not configured, not sending %r to %s", subject, to_email)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.SMTP_FROM
        msg["To"] = to_email
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(body_html, subtype="html")

        try:
            await run_in_threadpool(self._deliver, msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send %r to %s", subject, to_email)
            raise
        logger.info("Sent %r to %s", subject, to_email)


def verification_email(settings: Settings, token: str) -> tuple[str, str]:
    url = f"{settings.FRONTEND_URL}/verify-email/{token}"
    html = f"""
        <h2>Welcome to {settings.TWOFA_ISSUER}!</h2>
        <p>Please verify your email address by clicking the link below:</p>
        <a href="{url}">{url}</a>
        <p>This link will expire in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>
    """
    return "Verify your email address", html


def password_reset_email(settings: Settings, token: str) -> tuple[str, str]:
    url = f"{settings.FRONTEND_URL}/reset-password/{token}"
    html = f"""
        <h2>Password Reset Request</h2>
        <p>You requested to reset your password. Click the link below to proceed:</p>
        <a href="{url}">{url}</a>
        <p>This link will expire in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>
        <p>If you didn't request this, please ignore this email.</p>
    """
    return "Password Reset Request", html
