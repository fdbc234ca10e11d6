"""
auth/notifier.py -- Outgoing message delivery for password reset links.

Notifier is the interface CredentialAuthority depends on; SmtpNotifier is the
production implementation over aiosmtplib. Tests substitute a small fake.

Contract: send() returns normally on success and raises DeliveryError on any
transport failure. The authority treats DeliveryError as "clear the pending
token and report delivery_failed".

The message body contains a live reset link, so it is never logged -- only
the recipient and subject are.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from email.message import EmailMessage

import aiosmtplib

from auth.errors import DeliveryError

logger = logging.getLogger("credgate.auth.notifier")


class Notifier(ABC):
    """Delivers a plain-text message to an email address."""

    @abstractmethod
    async def send(self, to_email: str, subject: str, body: str) -> None:
        """Deliver the message.

        Raises:
            DeliveryError: the message could not be handed to the transport.
        """


class SmtpNotifier(Notifier):
    """SMTP delivery via aiosmtplib.

    An empty host means mail is not configured for this deployment; every
    send() then fails with DeliveryError instead of silently dropping the
    message.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: int = 10,
        from_email: str = "no-reply@localhost",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email

    async def send(self, to_email: str, subject: str, body: str) -> None:
        if not self.host:
            raise DeliveryError("SMTP host is not configured")

        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        try:
            async with aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                start_tls=self.use_tls,
                timeout=self.timeout,
            ) as smtp:
                if self.username:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s via %s failed: %s", to_email, self.host, type(exc).__name__)
            raise DeliveryError("failed to send email") from exc
        logger.info("Sent %r to %s", subject, to_email)
