"""Reminder delivery: push first, email fallback."""
from __future__ import annotations

from typing import Dict

from attrs import define

from taxbot.automation.executors.base import Handler
from taxbot.automation.models import (
    Notification,
    NotificationStatus,
    NotificationType,
    ProcessingResult,
    Task,
    TaskType,
)
from taxbot.automation.notifications import CHANNEL_NONE, NotificationDispatcher
from taxbot.integrations.push import PushMessage

CREDENTIAL_REQUEST = "credential_request"

_TITLES: Dict[str, str] = {
    CREDENTIAL_REQUEST: "Digital signature update required",
}


@define(slots=False)
class ReminderHandler(Handler):
    task_types = frozenset({TaskType.REMINDER})

    dispatcher: NotificationDispatcher

    async def handle(self, task: Task) -> ProcessingResult:
        payload = task.payload or {}
        reminder_type = str(payload.get("reminder_type") or "reminder")
        text = str(payload.get("message") or "Your tax filing deadline is approaching")
        message = PushMessage(
            title=_TITLES.get(reminder_type, "Tax payment reminder"),
            body=text,
            tag="tax-reminder",
            require_interaction=True,
            data={"type": reminder_type, "schedule_id": payload.get("schedule_id")},
        )
        # email errors propagate: only a failed fallback fails the task
        channel = await self.dispatcher.deliver(task.customer_id, message)
        self.dispatcher.log.append(
            Notification(
                customer_id=task.customer_id,
                schedule_id=payload.get("schedule_id"),
                message=text,
                type=NotificationType.REMINDER,
                status=NotificationStatus.SENT if channel != CHANNEL_NONE else NotificationStatus.FAILED,
                channel=channel,
            )
        )
        return ProcessingResult.ok("Reminder sent", data={"channel": channel})


__all__ = ["CREDENTIAL_REQUEST", "ReminderHandler"]
