"""Data models for the tax automation engine."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from attrs import define, field, validators

Clock = Callable[[], datetime]

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are read as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class TaskType(str, enum.Enum):
    DECLARATION = "declaration"
    PAYMENT = "payment"
    REMINDER = "reminder"
    STATUS_CHECK = "statusCheck"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TaskType"]:
        # older clients send the snake_case wire name
        if value == "check_status":
            return cls.STATUS_CHECK
        return None


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
    TaskPriority.URGENT: 4,
}


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


DEFAULT_MAX_RETRIES: Dict[TaskType, int] = {
    TaskType.DECLARATION: 3,
    TaskType.PAYMENT: 3,
    TaskType.REMINDER: 2,
    TaskType.STATUS_CHECK: 5,
}


@define(slots=True)
class ProcessingResult:
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    errors: Optional[List[str]] = None

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "ProcessingResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, message: str, errors: Optional[List[str]] = None) -> "ProcessingResult":
        return cls(success=False, message=message, errors=errors)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        if self.errors:
            out["errors"] = list(self.errors)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingResult":
        return cls(
            success=bool(data.get("success")),
            message=str(data.get("message", "")),
            data=data.get("data"),
            errors=data.get("errors"),
        )


def _check_retry_budget(instance: "Task", attribute: Any, value: int) -> None:
    if value < 0:
        raise ValueError(f"{attribute.name} must be >= 0")
    if attribute.name == "retry_count" and value > instance.max_retries:
        raise ValueError(
            f"retry_count {value} exceeds max_retries {instance.max_retries} for task {instance.id}"
        )


@define(slots=True)
class Task:
    """One deferred unit of automation work.

    Tasks are created by the Task API or by a calendar firing, mutated only
    through :meth:`TaskQueue.update` and never deleted.
    """

    customer_id: str
    task_type: TaskType = field(converter=TaskType)
    scheduled_at: datetime = field(converter=ensure_utc)
    payload: Dict[str, Any] = field(factory=dict)
    priority: TaskPriority = field(default=TaskPriority.MEDIUM, converter=TaskPriority)
    status: TaskStatus = field(default=TaskStatus.PENDING, converter=TaskStatus)
    max_retries: int = field(default=3, validator=_check_retry_budget)
    retry_count: int = field(default=0, validator=_check_retry_budget)
    id: str = field(factory=lambda: new_id("task"))
    executed_at: Optional[datetime] = None
    result: Optional[ProcessingResult] = None
    created_at: datetime = field(factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "task_type": self.task_type.value,
            "priority": self.priority.value,
            "scheduled_at": self.scheduled_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "payload": self.payload,
            "result": self.result.to_dict() if self.result else None,
            "created_at": self.created_at.isoformat(),
        }


class TaxType(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


def _months_converter(value: Any) -> Tuple[int, ...]:
    if value is None:
        return ()
    if isinstance(value, int):
        return (value,)
    return tuple(sorted({int(item) for item in value}))


_MONTH_LENGTH = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}


def _check_months(instance: "RecurrenceRule", attribute: Any, value: Tuple[int, ...]) -> None:
    for month in value:
        if not 1 <= month <= 12:
            raise ValueError(f"month {month} is out of range 1..12")
    if value and all(instance.day > _MONTH_LENGTH[month] for month in value):
        raise ValueError(f"day {instance.day} does not exist in month(s) {list(value)}")


def _check_timezone(instance: "RecurrenceRule", attribute: Any, value: str) -> None:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {value!r}") from exc


@define(frozen=True, slots=True)
class RecurrenceRule:
    """Fires at a fixed local time on a fixed day of month.

    An empty ``months`` tuple means every month.
    """

    day: int = field(validator=[validators.instance_of(int), validators.ge(1), validators.le(31)])
    hour: int = field(default=9, validator=[validators.instance_of(int), validators.ge(0), validators.le(23)])
    minute: int = field(default=0, validator=[validators.instance_of(int), validators.ge(0), validators.le(59)])
    months: Tuple[int, ...] = field(default=(), converter=_months_converter, validator=_check_months)
    timezone: str = field(default=DEFAULT_TIMEZONE, validator=[validators.instance_of(str), _check_timezone])

    def to_trigger(self) -> CronTrigger:
        month = ",".join(str(m) for m in self.months) if self.months else "*"
        return CronTrigger(
            month=month,
            day=self.day,
            hour=self.hour,
            minute=self.minute,
            timezone=self.timezone,
        )

    def next_fire_time(self, after: datetime) -> Optional[datetime]:
        return self.to_trigger().get_next_fire_time(None, ensure_utc(after))


@define(frozen=True, slots=True)
class Schedule:
    id: str
    name: str
    description: str
    rule: RecurrenceRule
    due_date: str
    tax_type: TaxType = field(converter=TaxType)
    is_active: bool = True

    @property
    def reminder_message(self) -> str:
        return f"Reminder: {self.name} - due: {self.due_date}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "due_date": self.due_date,
            "tax_type": self.tax_type.value,
            "is_active": self.is_active,
            "rule": {
                "day": self.rule.day,
                "hour": self.rule.hour,
                "minute": self.rule.minute,
                "months": list(self.rule.months),
                "timezone": self.rule.timezone,
            },
        }


class NotificationType(str, enum.Enum):
    REMINDER = "reminder"
    WARNING = "warning"
    OVERDUE = "overdue"
    SUCCESS = "success"
    ERROR = "error"
    STATUS = "status"


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"


@define(frozen=True, slots=True)
class Notification:
    customer_id: str
    message: str
    type: NotificationType = field(converter=NotificationType)
    status: NotificationStatus = field(converter=NotificationStatus)
    schedule_id: Optional[str] = None
    channel: str = "none"
    id: str = field(factory=lambda: new_id("ntf"))
    sent_at: datetime = field(factory=utcnow, converter=ensure_utc)


@define(frozen=True, slots=True)
class Credential:
    """Digital signature used to authenticate against the eTax gateway."""

    customer_id: str
    certificate_serial: str
    valid_to: datetime = field(converter=ensure_utc)
    valid_from: Optional[datetime] = None
    issuer_name: str = ""
    public_key: str = ""
    is_active: bool = True

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = ensure_utc(now) if now else utcnow()
        return self.is_active and now < self.valid_to


@define(frozen=True, slots=True)
class Customer:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


__all__ = [
    "Clock",
    "Credential",
    "Customer",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEZONE",
    "Notification",
    "NotificationStatus",
    "NotificationType",
    "ProcessingResult",
    "RecurrenceRule",
    "Schedule",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "TaxType",
    "ensure_utc",
    "new_id",
    "utcnow",
]
