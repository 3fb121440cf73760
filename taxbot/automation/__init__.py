"""Tax automation engine: task queue, retry processor and tax calendar."""

from .models import (
    Notification,
    ProcessingResult,
    Schedule,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from .queue import TaskQueue
from .store.memory import MemoryTaskStore

__all__ = [
    "MemoryTaskStore",
    "Notification",
    "ProcessingResult",
    "Schedule",
    "Task",
    "TaskPriority",
    "TaskQueue",
    "TaskStatus",
    "TaskType",
]
