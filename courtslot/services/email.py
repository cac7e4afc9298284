"""Email sending via SMTP.

Delivery is best-effort. Each recipient gets an individual message so one
bad address or SMTP hiccup never stops the others, and nothing here ever
raises into a caller whose state change has already committed.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib

from courtslot.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    """A message owed to a set of addresses once the current transaction commits."""

    recipients: tuple[str, ...]
    subject: str
    body: str

    @classmethod
    def to(cls, recipients: Iterable[str], subject: str, body: str) -> "Notice":
        # Keep first-seen order, drop blanks and repeats
        unique = tuple(dict.fromkeys(r for r in recipients if r))
        return cls(unique, subject, body)


async def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email via SMTP."""
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    await aiosmtplib.send(
        message,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
    )


async def deliver(notices: Iterable[Notice]) -> int:
    """Send every notice to each of its recipients. Returns the number of successful sends."""
    sent = 0
    for notice in notices:
        for recipient in notice.recipients:
            try:
                await send_email(recipient, notice.subject, notice.body)
            except Exception:
                logger.exception("Failed to send %r to %s", notice.subject, recipient)
                continue
            sent += 1
            logger.info("Sent %r to %s", notice.subject, recipient)
    return sent
