"""Customer notifications: push first, email as fallback, plus an audit log."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, List, Optional

from attrs import define, field

from taxbot.automation.models import (
    Notification,
    NotificationStatus,
    NotificationType,
)
from taxbot.automation.store.interface import TaskStoreProtocol
from taxbot.integrations.customers import CustomerDirectory
from taxbot.integrations.email import EmailChannel
from taxbot.integrations.push import PushMessage, PushNotificationService

logger = logging.getLogger(__name__)

CHANNEL_PUSH = "push"
CHANNEL_EMAIL = "email"
CHANNEL_NONE = "none"

DEFAULT_PUSH_TIMEOUT = 30.0

_TITLES = {
    NotificationType.REMINDER: "Tax payment reminder",
    NotificationType.WARNING: "Tax warning",
    NotificationType.OVERDUE: "Overdue tax payment",
    NotificationType.SUCCESS: "Success",
    NotificationType.ERROR: "Processing error",
    NotificationType.STATUS: "Declaration status update",
}


class NotificationLog:
    """Append-only audit trail of outbound messages.

    Entries are reporting data only; nothing in the engine reads them back
    to make decisions.
    """

    def __init__(self, store: Optional[TaskStoreProtocol] = None) -> None:
        self.store = store
        self._entries: List[Notification] = []
        self._lock = threading.Lock()

    def append(self, notification: Notification) -> Notification:
        with self._lock:
            self._entries.append(notification)
        if self.store is not None:
            try:
                self.store.append_notification(notification)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Failed to persist notification %s", notification.id)
        return notification

    def list(self, customer_id: Optional[str] = None) -> List[Notification]:
        with self._lock:
            if customer_id is None:
                return list(self._entries)
            return [entry for entry in self._entries if entry.customer_id == customer_id]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            entries = list(self._entries)
        return {
            "total": len(entries),
            "sent": sum(1 for n in entries if n.status is NotificationStatus.SENT),
            "failed": sum(1 for n in entries if n.status is NotificationStatus.FAILED),
            "pending": sum(1 for n in entries if n.status is NotificationStatus.PENDING),
        }


@define(slots=False)
class NotificationDispatcher:
    push: PushNotificationService
    email: EmailChannel
    customers: CustomerDirectory
    log: NotificationLog = field(factory=NotificationLog)
    push_timeout: float = DEFAULT_PUSH_TIMEOUT

    async def push_message(self, customer_id: str, message: PushMessage) -> bool:
        """Push delivery; transport errors and timeouts count as not delivered."""
        try:
            return bool(
                await asyncio.wait_for(self.push.send_to_user(customer_id, message), timeout=self.push_timeout)
            )
        except asyncio.TimeoutError:
            logger.warning("Push delivery to customer %s timed out after %.0fs", customer_id, self.push_timeout)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Push delivery to customer %s raised: %s", customer_id, exc)
            return False

    async def email_customer(self, customer_id: str, subject: str, body: str) -> bool:
        """Email the customer. Returns ``False`` when no address is known.

        Channel errors propagate to the caller.
        """
        customer = self.customers.get_customer(customer_id)
        if customer is None or not customer.email:
            logger.info("No email address for customer %s", customer_id)
            return False
        greeting = f"Hello {customer.full_name},\n\n" if customer.full_name else ""
        await self.email.send(customer.email, subject, f"{greeting}{body}\n\nTaxBot Vietnam")
        return True

    async def deliver(
        self,
        customer_id: str,
        message: PushMessage,
        subject: Optional[str] = None,
    ) -> str:
        """Push, falling back to email. Returns the channel used."""
        if await self.push_message(customer_id, message):
            return CHANNEL_PUSH
        if await self.email_customer(customer_id, subject or message.title, message.body):
            return CHANNEL_EMAIL
        return CHANNEL_NONE

    async def notify(
        self,
        customer_id: str,
        text: str,
        kind: NotificationType,
        *,
        schedule_id: Optional[str] = None,
        data: Optional[dict] = None,
        tag: Optional[str] = None,
    ) -> Notification:
        """Best-effort delivery that never raises; the outcome is logged."""
        kind = NotificationType(kind)
        message = PushMessage(
            title=_TITLES[kind],
            body=text,
            tag=tag or kind.value,
            data={"type": kind.value, **(data or {})},
            require_interaction=kind in (NotificationType.ERROR, NotificationType.OVERDUE),
        )
        try:
            channel = await self.deliver(customer_id, message)
            status = NotificationStatus.SENT if channel != CHANNEL_NONE else NotificationStatus.FAILED
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Notification to customer %s failed: %s", customer_id, exc)
            channel = CHANNEL_NONE
            status = NotificationStatus.FAILED
        return self.log.append(
            Notification(
                customer_id=customer_id,
                schedule_id=schedule_id,
                message=text,
                type=kind,
                status=status,
                channel=channel,
            )
        )


__all__ = [
    "CHANNEL_EMAIL",
    "CHANNEL_NONE",
    "CHANNEL_PUSH",
    "DEFAULT_PUSH_TIMEOUT",
    "NotificationDispatcher",
    "NotificationLog",
]
