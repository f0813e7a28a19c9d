"""Email adapters used by the notification dispatcher.

Adapters never raise for delivery problems; they report them on the
``SendResult`` so the dispatcher can record a FAILED notification.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage as MIMEMessage
from email.utils import make_msgid
from functools import lru_cache
from typing import Optional, Protocol

import requests

from nephrawn.config import settings

logger = logging.getLogger("nephrawn.email")


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailAdapter(Protocol):
    async def send(self, message: EmailMessage) -> SendResult:
        ...


class ConsoleEmailAdapter:
    """Logs emails instead of sending them. Used in development."""

    async def send(self, message: EmailMessage) -> SendResult:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        logger.info(
            "Console email %s to=%s subject=%r\n%s",
            message_id,
            message.to,
            message.subject,
            message.text or message.html,
        )
        return SendResult(success=True, message_id=message_id)


class SMTPEmailAdapter:
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = settings.email_from,
        timeout: float = settings.smtp_timeout_seconds,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def _build(self, message: EmailMessage) -> MIMEMessage:
        mime = MIMEMessage()
        mime["Subject"] = message.subject
        mime["From"] = self.from_address
        mime["To"] = message.to
        mime["Message-ID"] = make_msgid(domain=self.from_address.rsplit("@", 1)[-1].strip(">"))
        mime.set_content(message.text or "")
        mime.add_alternative(message.html, subtype="html")
        return mime

    def _send_sync(self, mime: MIMEMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(mime)

    async def send(self, message: EmailMessage) -> SendResult:
        mime = self._build(message)
        try:
            await asyncio.to_thread(self._send_sync, mime)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s via SMTP: %s", message.to, exc)
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)
        logger.info("Email sent via SMTP to %s subject=%r", message.to, message.subject)
        return SendResult(success=True, message_id=mime["Message-ID"])


class ResendEmailAdapter:
    """Sends through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        from_address: str = settings.email_from,
        api_url: str = settings.resend_api_url,
        timeout: float = settings.resend_timeout_seconds,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.timeout = timeout

    def _post(self, payload: dict) -> requests.Response:
        return requests.post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )

    async def send(self, message: EmailMessage) -> SendResult:
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        try:
            response = await asyncio.to_thread(self._post, payload)
        except requests.RequestException as exc:
            logger.error("Exception sending email to %s via Resend: %s", message.to, exc)
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        if response.status_code >= 400:
            try:
                detail = response.json().get("message") or response.text
            except ValueError:
                detail = response.text.strip()[:240]
            logger.error(
                "Resend rejected email to %s (%s): %s",
                message.to,
                response.status_code,
                detail,
            )
            return SendResult(success=False, error=f"HTTP {response.status_code}: {detail}")

        message_id = response.json().get("id")
        logger.info("Email sent via Resend to %s message_id=%s", message.to, message_id)
        return SendResult(success=True, message_id=message_id)


@lru_cache()
def get_email_adapter() -> EmailAdapter:
    """Adapter selected by ``EMAIL_BACKEND``."""
    if settings.email_backend == "smtp":
        logger.info("Using SMTP email adapter (%s:%s)", settings.smtp_host, settings.smtp_port)
        return SMTPEmailAdapter(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    if settings.email_backend == "resend":
        logger.info("Using Resend email adapter")
        return ResendEmailAdapter(api_key=settings.resend_api_key)
    logger.info("Using console email adapter")
    return ConsoleEmailAdapter()
