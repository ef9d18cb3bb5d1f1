"""
SMTP email provider implementation.
"""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from uuid import uuid4

from surveyreach.notifications.email.config import EmailConfig
from surveyreach.notifications.email.interface import EmailMessage, EmailProvider, EmailResult
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)


class SMTPEmailProvider(EmailProvider):
    """SMTP-based email provider with optional STARTTLS and login."""

    def __init__(self, config: EmailConfig) -> None:
        self._config = config
        self._default_from = config.default_sender

    async def send(self, message: EmailMessage) -> EmailResult:
        """Send email via SMTP in a worker thread."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._send_sync, message)
        except (OSError, smtplib.SMTPException) as e:
            logger.warning(
                "Failed to send email",
                extra={"to_email": message.to_email, "error": str(e)},
            )
            return EmailResult(success=False, error_message=str(e))

    def _build_mime(self, message: EmailMessage, message_id: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_email or self._default_from
        msg["To"] = message.to_email
        msg["Message-ID"] = message_id
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        for header_name, header_value in message.headers.items():
            msg[header_name] = header_value

        # Text part first (fallback)
        if message.body_text:
            msg.attach(MIMEText(message.body_text, "plain", "utf-8"))
        msg.attach(MIMEText(message.body_html, "html", "utf-8"))
        return msg

    def _send_sync(self, message: EmailMessage) -> EmailResult:
        cfg = self._config
        message_id = f"<{uuid4()}@{cfg.smtp_host}>"
        msg = self._build_mime(message, message_id)

        try:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.send_timeout_seconds) as server:
                if cfg.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if cfg.smtp_username and cfg.smtp_password:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.send_message(msg)
        except smtplib.SMTPException as e:
            logger.error(
                "SMTP error",
                extra={"to_email": message.to_email, "error": str(e)},
            )
            return EmailResult(success=False, error_message=f"SMTP error: {e}")

        logger.info(
            "Email sent",
            extra={"to_email": message.to_email, "message_id": message_id},
        )
        return EmailResult(success=True, provider_message_id=message_id)

    async def health_check(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._health_check_sync)

    def _health_check_sync(self) -> bool:
        try:
            with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=10) as server:
                server.noop()
            return True
        except (OSError, smtplib.SMTPException):
            return False
