"""Outbound email channels."""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional, Protocol

from attrs import define, field

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "noreply@taxbot.vn"


class EmailChannel(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


@define(slots=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str


@define(slots=True)
class MemoryOutbox:
    """Collects messages instead of sending them (development and tests)."""

    sent: List[OutgoingEmail] = field(factory=list)

    async def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append(OutgoingEmail(to=to, subject=subject, body=body))
        logger.info("Queued email to %s: %s", to, subject)


@define(slots=True)
class SMTPEmailChannel:
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    sender: str = DEFAULT_SENDER
    use_tls: bool = True
    timeout: float = 30.0

    async def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        await asyncio.to_thread(self._deliver, message)
        logger.info("Sent email to %s: %s", to, subject)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


__all__ = ["DEFAULT_SENDER", "EmailChannel", "MemoryOutbox", "OutgoingEmail", "SMTPEmailChannel"]
