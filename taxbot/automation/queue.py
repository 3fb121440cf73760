"""Ordered in-memory queue of automation tasks."""
from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from attrs import evolve, fields_dict

from taxbot.automation.models import Task, TaskStatus, ensure_utc, utcnow
from taxbot.automation.store.interface import TaskStoreProtocol

logger = logging.getLogger(__name__)

_ORDERING_FIELDS = {"priority", "scheduled_at"}
_TASK_FIELDS = frozenset(fields_dict(Task))


class TaskQueue:
    """Tasks sorted by ``(priority desc, scheduled_at asc)``.

    The queue never pops: :meth:`next_eligible` is a pure query and callers
    move tasks between states with :meth:`update` (or :meth:`claim_next`,
    which does the query and the ``processing`` transition in one step).
    Terminal tasks stay in the queue for auditing and statistics.

    When a ``store`` is given every enqueue and update is written through to
    it, and :meth:`restore` reloads the queue at startup.
    """

    def __init__(self, store: Optional[TaskStoreProtocol] = None) -> None:
        self.store = store
        self._tasks: List[Task] = []
        self._index: Dict[str, Task] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def enqueue(self, task: Task) -> Task:
        with self._lock:
            if task.id in self._index:
                raise ValueError(f"Task {task.id} already exists")
            self._tasks.append(task)
            self._index[task.id] = task
            self._sequence[task.id] = next(self._counter)
            self._sort()
            self._persist(task)
        return task

    def next_eligible(self, now: Optional[datetime] = None) -> Optional[Task]:
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            for task in self._tasks:
                if task.status is TaskStatus.PENDING and task.scheduled_at <= now:
                    return task
        return None

    def claim_next(self, now: Optional[datetime] = None) -> Optional[Task]:
        """Atomically pick the next eligible task and mark it ``processing``."""
        now = ensure_utc(now) if now else utcnow()
        with self._lock:
            task = self.next_eligible(now)
            if task is None:
                return None
            changes: Dict[str, Any] = {"status": TaskStatus.PROCESSING}
            if task.executed_at is None:
                changes["executed_at"] = now
            return self.update(task.id, **changes)

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._index.get(task_id)

    def update(self, task_id: str, **changes: Any) -> Task:
        unknown = set(changes) - _TASK_FIELDS
        if unknown:
            raise AttributeError(f"Task has no field(s): {', '.join(sorted(unknown))}")
        if "id" in changes:
            raise AttributeError("Task id is immutable")

        with self._lock:
            task = self._index.get(task_id)
            if task is None:
                raise KeyError(f"Task {task_id} not found")

            retry_count = changes.get("retry_count", task.retry_count)
            max_retries = changes.get("max_retries", task.max_retries)
            if retry_count > max_retries:
                raise ValueError(
                    f"retry_count {retry_count} exceeds max_retries {max_retries} for task {task_id}"
                )
            # convert and validate the whole change set before touching the task
            try:
                candidate = evolve(task, **changes)
            except (TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"invalid update for task {task_id}: {exc}") from exc
            # max_retries first, so the retry_count validator sees the new budget
            if "max_retries" in changes:
                task.max_retries = candidate.max_retries
            for name in changes:
                setattr(task, name, getattr(candidate, name))

            if _ORDERING_FIELDS & set(changes):
                self._sort()
            self._persist(task)
            return task

    def list(self, status: Union[TaskStatus, str, None] = None) -> List[Task]:
        with self._lock:
            if status is None:
                return list(self._tasks)
            wanted = TaskStatus(status)
            return [task for task in self._tasks if task.status is wanted]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {status: 0 for status in TaskStatus}
            for task in self._tasks:
                counts[task.status] += 1
            return {
                "total": len(self._tasks),
                "pending": counts[TaskStatus.PENDING],
                "processing": counts[TaskStatus.PROCESSING],
                "completed": counts[TaskStatus.COMPLETED],
                "failed": counts[TaskStatus.FAILED],
            }

    def restore(self) -> int:
        """Load tasks from the store; tasks left ``processing`` are re-armed."""
        if self.store is None:
            return 0
        restored = 0
        for task in self.store.list_tasks():
            if task.id in self._index:
                continue
            if task.status in (TaskStatus.PROCESSING, TaskStatus.RETRYING):
                task.status = TaskStatus.PENDING
            self.enqueue(task)
            restored += 1
        if restored:
            logger.info("Restored %d task(s) from %s", restored, type(self.store).__name__)
        return restored

    def _sort(self) -> None:
        self._tasks.sort(
            key=lambda task: (-task.priority.rank, task.scheduled_at, self._sequence[task.id])
        )

    def _persist(self, task: Task) -> None:
        if self.store is None:
            return
        try:
            self.store.save_task(task)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to persist task %s", task.id)


__all__ = ["TaskQueue"]
