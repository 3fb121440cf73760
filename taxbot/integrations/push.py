"""Push notification channel with per-customer subscriptions."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from attrs import define, field

logger = logging.getLogger(__name__)

DEFAULT_ICON = "/icon-192x192.png"
DEFAULT_BADGE = "/badge-72x72.png"


class PushDeliveryError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@define(frozen=True, slots=True)
class PushSubscription:
    endpoint: str
    p256dh: str = ""
    auth: str = ""


@define(slots=True)
class PushMessage:
    title: str
    body: str
    tag: Optional[str] = None
    data: Dict[str, Any] = field(factory=dict)
    require_interaction: bool = False
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE

    def to_payload(self) -> str:
        return json.dumps(
            {
                "title": self.title,
                "body": self.body,
                "icon": self.icon,
                "badge": self.badge,
                "data": self.data,
                "tag": self.tag,
                "requireInteraction": self.require_interaction,
                "timestamp": int(time.time() * 1000),
            },
            ensure_ascii=False,
        )


PushTransport = Callable[[PushSubscription, str], Awaitable[None]]


class PushNotificationService:
    """Fans a message out to every subscription of a customer.

    The wire transport (web push encryption, VAPID) is injected; without one
    nothing is delivered and :meth:`send_to_user` returns ``False`` so that
    callers fall back to email. Subscriptions answering 404/410 are dropped.
    """

    def __init__(self, transport: Optional[PushTransport] = None) -> None:
        self.transport = transport
        self._subscriptions: Dict[str, List[PushSubscription]] = {}

    def subscribe(self, customer_id: str, subscription: PushSubscription) -> None:
        current = self._subscriptions.setdefault(customer_id, [])
        if any(sub.endpoint == subscription.endpoint for sub in current):
            return
        current.append(subscription)
        logger.info("Added push subscription for customer %s", customer_id)

    def unsubscribe(self, customer_id: str, endpoint: str) -> None:
        current = self._subscriptions.get(customer_id, [])
        self._subscriptions[customer_id] = [sub for sub in current if sub.endpoint != endpoint]
        logger.info("Removed push subscription for customer %s", customer_id)

    def subscriptions(self, customer_id: str) -> List[PushSubscription]:
        return list(self._subscriptions.get(customer_id, []))

    async def send_to_user(self, customer_id: str, message: PushMessage) -> bool:
        subscriptions = self.subscriptions(customer_id)
        if not subscriptions:
            logger.debug("No push subscriptions for customer %s", customer_id)
            return False
        if self.transport is None:
            logger.warning("Push transport not configured; skipping customer %s", customer_id)
            return False

        payload = message.to_payload()
        outcomes = await asyncio.gather(
            *(self._send_one(customer_id, sub, payload) for sub in subscriptions)
        )
        delivered = sum(1 for ok in outcomes if ok)
        logger.info(
            "Sent push notification to %d/%d device(s) for customer %s",
            delivered,
            len(subscriptions),
            customer_id,
        )
        return delivered > 0

    async def _send_one(self, customer_id: str, subscription: PushSubscription, payload: str) -> bool:
        try:
            await self.transport(subscription, payload)
            return True
        except PushDeliveryError as exc:
            if exc.status_code in (404, 410):
                self.unsubscribe(customer_id, subscription.endpoint)
            logger.warning("Push to %s failed: %s", subscription.endpoint, exc)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Push to %s failed: %s", subscription.endpoint, exc)
            return False

    def get_stats(self) -> Dict[str, float]:
        users = sum(1 for subs in self._subscriptions.values() if subs)
        total = sum(len(subs) for subs in self._subscriptions.values())
        return {
            "total_users": users,
            "total_subscriptions": total,
            "average_subscriptions_per_user": total / users if users else 0,
        }


__all__ = [
    "PushDeliveryError",
    "PushMessage",
    "PushNotificationService",
    "PushSubscription",
    "PushTransport",
]
