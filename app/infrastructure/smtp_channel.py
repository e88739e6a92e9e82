"""
SMTP delivery channel with connection retry logic.
"""

import logging
from abc import ABC, abstractmethod
from email.mime.text import MIMEText

import aiosmtplib
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config.settings import Settings
from app.domain.errors import DeliveryError

logger = logging.getLogger(__name__)


class DeliveryChannel(ABC):
    """Outbound message transport used by the dispatch worker."""

    @abstractmethod
    async def send(self, sender: str, to: str, subject: str, html_body: str) -> None:
        """
        Deliver one message.

        Raises:
            DeliveryError: If the message could not be handed to the transport
        """


class SMTPDeliveryChannel(DeliveryChannel):
    """Send reminder emails through an SMTP server."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        secure: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.secure = secure
        self.timeout = timeout

    def _build_message(self, sender: str, to: str, subject: str, html_body: str) -> MIMEText:
        msg = MIMEText(html_body, "html", "utf-8")
        msg["From"] = sender
        msg["To"] = to
        msg["Subject"] = subject
        return msg

    # Only connection failures are retried, never a rejected message
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(aiosmtplib.SMTPConnectError),
        reraise=True
    )
    async def _send_message(self, msg: MIMEText) -> None:
        await aiosmtplib.send(
            msg,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            use_tls=self.secure,
            start_tls=False if self.secure else None,
            timeout=self.timeout,
        )

    async def send(self, sender: str, to: str, subject: str, html_body: str) -> None:
        msg = self._build_message(sender, to, subject, html_body)
        try:
            await self._send_message(msg)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to} failed: {e}")
            raise DeliveryError(str(e) or e.__class__.__name__) from e
        logger.info(f"Reminder email sent to {to}")


def build_delivery_channel(settings: Settings) -> SMTPDeliveryChannel:
    """
    Create the SMTP channel from settings.

    Raises:
        ConfigurationError: If host or credentials are missing
    """
    settings.require_smtp()
    return SMTPDeliveryChannel(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        secure=settings.smtp_secure,
        timeout=settings.smtp_timeout_seconds,
    )
