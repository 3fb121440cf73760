"""Tests for push subscriptions and delivery."""
from __future__ import annotations

import asyncio
import json

from taxbot.integrations.push import (
    PushDeliveryError,
    PushMessage,
    PushNotificationService,
    PushSubscription,
)


def run(coro):
    return asyncio.run(coro)


def test_send_without_transport_reports_not_delivered() -> None:
    push = PushNotificationService()
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/1"))

    assert run(push.send_to_user("c1", PushMessage(title="t", body="b"))) is False


def test_gone_subscriptions_are_dropped() -> None:
    delivered = []

    async def transport(subscription, payload):
        if subscription.endpoint.endswith("/gone"):
            raise PushDeliveryError("gone", status_code=410)
        delivered.append(json.loads(payload))

    push = PushNotificationService(transport=transport)
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/ok"))
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/gone"))

    ok = run(push.send_to_user("c1", PushMessage(title="Tax", body="due", tag="tax-reminder")))

    assert ok is True
    assert [sub.endpoint for sub in push.subscriptions("c1")] == ["https://push.example/ok"]
    assert delivered[0]["title"] == "Tax"
    assert delivered[0]["tag"] == "tax-reminder"


def test_subscribe_ignores_duplicate_endpoints() -> None:
    push = PushNotificationService()
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/1"))
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/1"))
    push.subscribe("c2", PushSubscription(endpoint="https://push.example/2"))
    push.subscribe("c2", PushSubscription(endpoint="https://push.example/3"))

    assert push.get_stats() == {
        "total_users": 2,
        "total_subscriptions": 3,
        "average_subscriptions_per_user": 1.5,
    }
