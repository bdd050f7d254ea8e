from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, HtmlContent, Mail, To


log = logging.getLogger(__name__)


class EmailSendError(Exception):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to_email: str
    to_name: str
    subject: str
    html: str
    text: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None:
        """Deliver the message or raise EmailSendError."""


class SendGridEmailSender:
    def __init__(self, *, api_key: str | None, from_email: str):
        self._from_email = from_email
        self._client = SendGridAPIClient(api_key=api_key) if api_key else None

    async def send(self, message: EmailMessage) -> None:
        if self._client is None:
            raise EmailSendError("SendGrid not configured")

        mail = Mail(
            from_email=Email(self._from_email),
            to_emails=To(message.to_email, message.to_name or None),
            subject=message.subject,
        )
        mail.add_content(Content("text/plain", message.text))
        mail.add_content(HtmlContent(message.html))

        # the SendGrid client is blocking
        response = await asyncio.to_thread(self._client.send, mail)
        if response.status_code not in (200, 201, 202):
            raise EmailSendError(f"SendGrid returned HTTP {response.status_code}")

        log.info("email sent: to=%s subject=%r status=%s", message.to_email, message.subject, response.status_code)
