"""Outbound SMTP transport for the confirmation reply.

``smtplib`` is blocking, so each send runs in ``asyncio.to_thread()``
the same way the IMAP client does.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

import structlog

from .config import RetryConfig, SmtpConfig
from .errors import ReplySendError
from .retry import with_retry

logger = structlog.get_logger()

_TRANSIENT_SMTP_ERRORS = (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, ConnectionError)


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class SmtpMailer:
    """Sends a single message with one attachment."""

    def __init__(self, config: SmtpConfig, retry_config: RetryConfig) -> None:
        self._config = config
        self._retry = with_retry(retry_config, retryable_exceptions=_TRANSIENT_SMTP_ERRORS)

    @property
    def sender(self) -> str:
        return self._config.from_address or self._config.username or f"docrelay@{self._config.host}"

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Attachment | None = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=self.sender.rpartition("@")[2] or None)
        msg.set_content(body)
        if attachment is not None:
            maintype, _, subtype = attachment.content_type.partition("/")
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return msg

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Attachment | None = None,
    ) -> None:
        """Deliver one message.  Raises :class:`ReplySendError` on failure."""

        @self._retry
        async def _send(msg: EmailMessage) -> None:
            await asyncio.to_thread(self._send_sync, msg)

        try:
            await _send(self.build_message(to, subject, body, attachment))
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            logger.error("reply_send_failed", to=to, subject=subject, error=str(exc))
            raise ReplySendError(f"Could not send reply to {to}: {exc}") from exc
        logger.info("reply_sent", to=to, subject=subject)

    def _send_sync(self, msg: EmailMessage) -> None:
        timeout = self._config.timeout_seconds
        if self._config.use_ssl:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                self._config.host,
                self._config.port,
                timeout=timeout,
                context=ssl.create_default_context(),
            )
        else:
            server = smtplib.SMTP(self._config.host, self._config.port, timeout=timeout)
        with server:
            if self._config.use_tls and not self._config.use_ssl:
                server.starttls(context=ssl.create_default_context())
            if self._config.username and self._config.password is not None:
                server.login(self._config.username, self._config.password.get_secret_value())
            server.send_message(msg)
