"""
Outbound bid email.

Bids go to the broker's address with the dispatcher as Reply-To, so the
broker's answer reaches the person who priced the load rather than the shared
sending mailbox.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Protocol

from loadhunter.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class MailResult:
    success: bool
    detail: str = ""
    message_id: Optional[str] = None


class MailSender(Protocol):
    async def send(
        self,
        recipient: str,
        cc: Optional[str],
        subject: str,
        body: str,
        reply_to: Optional[str] = None,
    ) -> MailResult:
        ...


class SmtpMailSender:
    """Sends bid emails over SMTP on a worker thread."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def build_message(
        self,
        recipient: str,
        cc: Optional[str],
        subject: str,
        body: str,
        reply_to: Optional[str] = None,
    ) -> EmailMessage:
        sender = self.settings.bid_from_email or self.settings.smtp_username
        message = EmailMessage()
        message["From"] = sender
        message["To"] = recipient
        if cc:
            message["Cc"] = cc
        if reply_to and reply_to != sender:
            message["Reply-To"] = reply_to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=sender.split("@")[-1] if sender and "@" in sender else None)
        message.set_content(body)
        return message

    async def send(
        self,
        recipient: str,
        cc: Optional[str],
        subject: str,
        body: str,
        reply_to: Optional[str] = None,
    ) -> MailResult:
        settings = self.settings
        if not settings.smtp_host or not settings.smtp_username or not settings.smtp_password:
            return MailResult(False, "SMTP not configured")

        message = self.build_message(recipient, cc, subject, body, reply_to)

        def _send() -> MailResult:
            try:
                with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
                    server.starttls()
                    server.login(settings.smtp_username, settings.smtp_password)
                    server.send_message(message)
            except (smtplib.SMTPException, OSError) as exc:
                logger.error(
                    "Bid email rejected by SMTP server",
                    extra={"recipient": recipient, "subject": subject, "error": str(exc)},
                )
                return MailResult(False, f"SMTP failure: {exc}")
            return MailResult(True, "Bid email handed to SMTP server", message_id=message["Message-ID"])

        return await asyncio.to_thread(_send)
