"""Store protocol shared by the queue and the notification log."""
from __future__ import annotations

from typing import List, Protocol

from taxbot.automation.models import Notification, Task


class TaskStoreProtocol(Protocol):
    def save_task(self, task: Task) -> None:
        ...

    def list_tasks(self) -> List[Task]:
        ...

    def append_notification(self, notification: Notification) -> None:
        ...

    def list_notifications(self) -> List[Notification]:
        ...


__all__ = ["TaskStoreProtocol"]
