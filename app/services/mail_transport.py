"""
SMTP mail transport.

smtplib is blocking, so each send runs in a worker thread with its own
connection and a bounded socket timeout.
"""

import asyncio
import smtplib
import ssl
from email.message import EmailMessage

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MailTransportError(Exception):
    """Raised when a message could not be handed to the SMTP server."""

    def __init__(self, message: str, recipient: str | None = None):
        super().__init__(message)
        self.recipient = recipient


class SmtpMailTransport:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
    ):
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port if port is not None else settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASS
        self.sender = sender or settings.smtp_sender()
        self.timeout = timeout if timeout is not None else settings.SMTP_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def _build_message(self, to: str, subject: str, html: str, text: str | None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text or "This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context) as smtp:
                smtp.login(self.username, self.password)
                smtp.send_message(message)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls(context=context)
                smtp.login(self.username, self.password)
                smtp.send_message(message)

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> None:
        """
        Deliver one message.

        Raises:
            MailTransportError: if the transport is unconfigured or the send fails
        """
        if not self.configured:
            raise MailTransportError("SMTP transport not configured", recipient=to)

        message = self._build_message(to, subject, html, text)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailTransportError(f"SMTP send failed: {e}", recipient=to) from e

        logger.info("Email sent", to=to, subject=subject[:60])
