"""Polling processor that drives automation tasks to a terminal state."""
from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from attrs import define, field

from taxbot.automation.executors.base import Handler
from taxbot.automation.models import (
    DEFAULT_MAX_RETRIES,
    Clock,
    NotificationType,
    ProcessingResult,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    ensure_utc,
    utcnow,
)
from taxbot.automation.notifications import NotificationDispatcher
from taxbot.automation.queue import TaskQueue

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_BASE_DELAY = 60.0

_FAILURE_MESSAGES = {
    TaskType.DECLARATION: "Automatic tax declaration failed",
    TaskType.PAYMENT: "Automatic tax payment failed",
    TaskType.REMINDER: "Tax reminder could not be delivered",
    TaskType.STATUS_CHECK: "Declaration status check failed",
}

WhenType = Union[datetime, str, None]


def parse_scheduled_at(value: WhenType, now: datetime) -> datetime:
    if value is None:
        return now
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as exc:
            raise ValueError(f"invalid scheduled_at: {value!r}") from exc
    raise ValueError(f"invalid scheduled_at: {value!r}")


def encode_document(document: Union[bytes, str]) -> str:
    # payloads must stay JSON-serialisable; documents travel base64-encoded
    if isinstance(document, (bytes, bytearray)):
        return base64.b64encode(bytes(document)).decode("ascii")
    return document


@define(slots=False)
class TaskProcessor:
    """Pulls eligible tasks from the queue and applies the retry policy.

    Each tick claims at most ``workers`` tasks (one by default) and ticks
    never overlap. A failed attempt re-arms the task as ``pending`` with
    ``scheduled_at = now + base_delay * 2 ** retry_count`` until the retry
    budget is spent, after which the task is ``failed`` and the customer is
    told.
    """

    queue: TaskQueue
    handlers: Iterable[Handler]
    dispatcher: Optional[NotificationDispatcher] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    base_delay: float = DEFAULT_BASE_DELAY
    workers: int = 1
    clock: Clock = utcnow
    enable_background: bool = True
    scheduler: Optional[AsyncIOScheduler] = None
    _tick_lock: Optional[asyncio.Lock] = field(init=False, default=None)
    _scheduler: Optional[AsyncIOScheduler] = field(init=False, default=None)
    _job_id: Optional[str] = field(init=False, default=None)
    _running: bool = field(init=False, default=False)

    def __attrs_post_init__(self) -> None:
        self.handlers = tuple(self.handlers)
        self.poll_interval = max(0.1, float(self.poll_interval))
        self.workers = max(1, int(self.workers))
        self._scheduler = self.scheduler if self.enable_background else None
        if self.enable_background and self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start background polling using APScheduler."""
        if not self.enable_background:
            raise RuntimeError("Background polling is disabled for this TaskProcessor instance")
        if self._scheduler is None:
            raise RuntimeError("AsyncIOScheduler is not configured")
        if self._running:
            return
        self._job_id = "automation-poll"
        self._scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=self.poll_interval,
            id=self._job_id,
            name="automation-poll",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        self._running = True
        logger.info("Task processor started (poll every %.0fs, %d worker(s))", self.poll_interval, self.workers)

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._job_id and self._scheduler.get_job(self._job_id):
            self._scheduler.remove_job(self._job_id)
        if self.scheduler is None and self._scheduler.running:
            # only shut down a scheduler this processor created; the shutdown may
            # complete on a later loop iteration, so a restart gets a fresh one
            self._scheduler.shutdown(wait=wait)
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._job_id = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> List[Task]:
        """Execute one polling cycle without timers (useful for tests)."""
        return await self.tick()

    async def tick(self) -> List[Task]:
        if self._tick_lock is None:
            self._tick_lock = asyncio.Lock()
        if self._tick_lock.locked():
            logger.debug("Previous tick still running; skipping")
            return []
        async with self._tick_lock:
            claimed: List[Task] = []
            now = self.clock()
            for _ in range(self.workers):
                task = self.queue.claim_next(now)
                if task is None:
                    break
                claimed.append(task)
            if not claimed:
                return []
            await asyncio.gather(*(self._process(task) for task in claimed))
            return claimed

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    async def _process(self, task: Task) -> None:
        logger.info("Processing task %s (%s, attempt %d)", task.id, task.task_type.value, task.retry_count + 1)
        handler = self._select_handler(task)
        if handler is None:
            result = ProcessingResult.failure(f"no handler registered for task type {task.task_type.value}")
        else:
            try:
                result = await handler.handle(task)
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Handler %s raised for task %s", handler.__class__.__name__, task.id)
                result = ProcessingResult.failure(str(exc) or exc.__class__.__name__)
            if not isinstance(result, ProcessingResult):
                result = ProcessingResult.failure(f"handler returned {type(result).__name__}")

        if result.success:
            self.queue.update(task.id, status=TaskStatus.COMPLETED, result=result)
            logger.info("Task %s completed: %s", task.id, result.message)
            return

        if task.retry_count < task.max_retries:
            retry_count = task.retry_count + 1
            retry_at = self.clock() + self.backoff(retry_count)
            self.queue.update(
                task.id,
                status=TaskStatus.PENDING,
                retry_count=retry_count,
                result=result,
                scheduled_at=retry_at,
            )
            logger.warning(
                "Task %s failed (%s); retry %d/%d at %s",
                task.id,
                result.message,
                retry_count,
                task.max_retries,
                retry_at.isoformat(),
            )
            return

        self.queue.update(task.id, status=TaskStatus.FAILED, result=result)
        logger.error("Task %s failed permanently after %d attempt(s): %s", task.id, task.retry_count + 1, result.message)
        await self._notify_failure(task, result)

    def backoff(self, retry_count: int) -> timedelta:
        return timedelta(seconds=self.base_delay * (2 ** retry_count))

    def _select_handler(self, task: Task) -> Optional[Handler]:
        for handler in self.handlers:
            if handler.can_handle(task):
                return handler
        return None

    async def _notify_failure(self, task: Task, result: ProcessingResult) -> None:
        if self.dispatcher is None:
            return
        text = f"{_FAILURE_MESSAGES.get(task.task_type, 'Automation task failed')}: {result.message}"
        await self.dispatcher.notify(
            task.customer_id,
            text,
            NotificationType.ERROR,
            data={"task_id": task.id, "task_type": task.task_type.value},
            tag="error",
        )

    # ------------------------------------------------------------------
    # Task API
    # ------------------------------------------------------------------
    def add_task(
        self,
        customer_id: str,
        task_type: Union[TaskType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        scheduled_at: WhenType = None,
        priority: Union[TaskPriority, str] = TaskPriority.MEDIUM,
        max_retries: Optional[int] = None,
    ) -> str:
        if not customer_id:
            raise ValueError("customer_id is required")
        task_type = TaskType(task_type)
        task = Task(
            customer_id=customer_id,
            task_type=task_type,
            scheduled_at=parse_scheduled_at(scheduled_at, self.clock()),
            payload=dict(payload or {}),
            priority=TaskPriority(priority),
            max_retries=DEFAULT_MAX_RETRIES[task_type] if max_retries is None else int(max_retries),
        )
        self.queue.enqueue(task)
        logger.info("Added task %s (%s) for customer %s", task.id, task_type.value, customer_id)
        return task.id

    def schedule_declaration(
        self,
        customer_id: str,
        declaration_data: Dict[str, Any],
        documents: Sequence[Any] = (),
        scheduled_at: WhenType = None,
    ) -> str:
        return self.add_task(
            customer_id,
            TaskType.DECLARATION,
            {"declaration_data": declaration_data, "documents": [encode_document(doc) for doc in documents]},
            scheduled_at=scheduled_at,
            priority=TaskPriority.HIGH,
        )

    def schedule_payment(
        self,
        customer_id: str,
        payment_data: Optional[Dict[str, Any]] = None,
        scheduled_at: WhenType = None,
    ) -> str:
        return self.add_task(
            customer_id,
            TaskType.PAYMENT,
            {"payment_data": payment_data or {}},
            scheduled_at=scheduled_at,
            priority=TaskPriority.HIGH,
        )

    def schedule_reminder(
        self,
        customer_id: str,
        reminder_type: str,
        message: str,
        scheduled_at: WhenType = None,
        **extra: Any,
    ) -> str:
        return self.add_task(
            customer_id,
            TaskType.REMINDER,
            {"reminder_type": reminder_type, "message": message, **extra},
            scheduled_at=scheduled_at,
            priority=TaskPriority.MEDIUM,
        )

    def schedule_status_check(
        self,
        customer_id: str,
        declaration_id: str,
        scheduled_at: WhenType = None,
    ) -> str:
        if not declaration_id:
            raise ValueError("declaration_id is required")
        return self.add_task(
            customer_id,
            TaskType.STATUS_CHECK,
            {"declaration_id": declaration_id},
            scheduled_at=scheduled_at,
            priority=TaskPriority.LOW,
        )

    def get_stats(self) -> Dict[str, int]:
        return self.queue.stats()

    def get_tasks(self, status: Union[TaskStatus, str, None] = None) -> List[Task]:
        return self.queue.list(status)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.queue.get(task_id)


__all__ = [
    "DEFAULT_BASE_DELAY",
    "DEFAULT_POLL_INTERVAL",
    "TaskProcessor",
    "encode_document",
    "parse_scheduled_at",
]
