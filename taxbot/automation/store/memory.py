"""In-memory store for testing and prototyping."""
from __future__ import annotations

import threading
from typing import Dict, List

from attrs import define, evolve, field

from taxbot.automation.models import Notification, Task


@define(slots=True)
class MemoryTaskStore:
    _tasks: Dict[str, Task] = field(factory=dict, init=False)
    _notifications: List[Notification] = field(factory=list, init=False)
    _lock: threading.Lock = field(factory=threading.Lock, init=False)

    def save_task(self, task: Task) -> None:
        # snapshot, so later in-place updates only land through save_task
        with self._lock:
            self._tasks[task.id] = evolve(task, payload=dict(task.payload))

    def get_task(self, task_id: str):
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(self) -> List[Task]:
        with self._lock:
            return [evolve(task, payload=dict(task.payload)) for task in self._tasks.values()]

    def append_notification(self, notification: Notification) -> None:
        with self._lock:
            self._notifications.append(notification)

    def list_notifications(self) -> List[Notification]:
        with self._lock:
            return list(self._notifications)


__all__ = ["MemoryTaskStore"]
