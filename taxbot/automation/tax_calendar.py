"""Calendar triggers for Vietnamese tax deadlines and the daily account sweep."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from attrs import define, field

from taxbot.automation.executors.base import with_timeout
from taxbot.automation.executors.payment import format_vnd
from taxbot.automation.executors.reminder import CREDENTIAL_REQUEST
from taxbot.automation.models import (
    DEFAULT_TIMEZONE,
    Clock,
    Credential,
    Customer,
    Notification,
    NotificationType,
    RecurrenceRule,
    Schedule,
    utcnow,
)
from taxbot.automation.notifications import NotificationDispatcher
from taxbot.automation.processor import TaskProcessor
from taxbot.integrations.credentials import CredentialStore
from taxbot.integrations.customers import CustomerDirectory
from taxbot.integrations.etax import DEFAULT_TIMEOUT, TaxGateway

logger = logging.getLogger(__name__)

DAILY_CHECK_JOB_ID = "daily-check"

TAX_SCHEDULES: Sequence[Schedule] = (
    Schedule(
        id="monthly_personal",
        name="Monthly personal income tax",
        description="Pay monthly personal income tax before the 20th",
        rule=RecurrenceRule(day=20, hour=9),
        due_date="20",
        tax_type="monthly",
    ),
    Schedule(
        id="quarterly_vat",
        name="Quarterly VAT",
        description="Pay quarterly VAT before the 30th of the first month of each quarter",
        rule=RecurrenceRule(day=30, hour=9, months=(1, 4, 7, 10)),
        due_date="30",
        tax_type="quarterly",
    ),
    Schedule(
        id="annual_finalization",
        name="Personal income tax finalization",
        description="Finalize personal income tax before 30/3",
        rule=RecurrenceRule(day=30, hour=9, months=(3,)),
        due_date="30/3",
        tax_type="annual",
    ),
    Schedule(
        id="annual_declaration",
        name="Annual personal income tax declaration",
        description="Declare annual personal income tax before 30/4",
        rule=RecurrenceRule(day=30, hour=9, months=(4,)),
        due_date="30/4",
        tax_type="annual",
    ),
    Schedule(
        id="provisional_tax",
        name="Year-end provisional tax",
        description="Pay year-end provisional tax before 15/12",
        rule=RecurrenceRule(day=15, hour=9, months=(12,)),
        due_date="15/12",
        tax_type="annual",
    ),
)


def schedule_from_config(data: Mapping[str, Any], default_timezone: str = DEFAULT_TIMEZONE) -> Schedule:
    rule = dict(data.get("rule") or {})
    rule.setdefault("timezone", default_timezone)
    return Schedule(
        id=str(data["id"]),
        name=str(data["name"]),
        description=str(data.get("description", "")),
        rule=RecurrenceRule(**rule),
        due_date=str(data.get("due_date", "")),
        tax_type=data["tax_type"],
        is_active=bool(data.get("is_active", True)),
    )


@define(slots=False)
class CalendarScheduler:
    """Turns calendar obligations into queued work.

    Tax schedule firings only enqueue reminder tasks; they never execute
    anything. The daily check reads the gateway and writes notifications
    directly. Every customer is handled on its own: one failing customer
    is logged and skipped.
    """

    processor: TaskProcessor
    customers: CustomerDirectory
    credentials: CredentialStore
    gateway: TaxGateway
    dispatcher: NotificationDispatcher
    schedules: Sequence[Schedule] = TAX_SCHEDULES
    timezone: str = DEFAULT_TIMEZONE
    daily_check_hour: int = 8
    daily_check_minute: int = 0
    upcoming_window_days: int = 7
    credential_expiry_days: int = 30
    gateway_timeout: float = DEFAULT_TIMEOUT
    clock: Clock = utcnow
    scheduler: Optional[AsyncIOScheduler] = None
    _owns_scheduler: bool = field(init=False, default=False)
    _job_ids: List[str] = field(init=False, factory=list)

    def __attrs_post_init__(self) -> None:
        self.schedules = tuple(self.schedules)
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=self.timezone)
            self._owns_scheduler = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def register_jobs(self) -> List[str]:
        for schedule in self.schedules:
            if not schedule.is_active:
                continue
            job_id = f"schedule:{schedule.id}"
            self.scheduler.add_job(
                self.fire_schedule,
                trigger=schedule.rule.to_trigger(),
                args=(schedule,),
                id=job_id,
                name=schedule.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._job_ids.append(job_id)
            logger.info("Scheduled %s (%s)", schedule.name, schedule.id)

        self.scheduler.add_job(
            self.run_daily_check,
            trigger=CronTrigger(
                hour=self.daily_check_hour,
                minute=self.daily_check_minute,
                timezone=self.timezone,
            ),
            id=DAILY_CHECK_JOB_ID,
            name="daily-check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._job_ids.append(DAILY_CHECK_JOB_ID)
        logger.info(
            "Daily check scheduled at %02d:%02d %s", self.daily_check_hour, self.daily_check_minute, self.timezone
        )
        return list(self._job_ids)

    def start(self) -> None:
        if self._job_ids:
            return
        self.register_jobs()
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Tax calendar initialized with %d schedule(s)", len(self.schedules))

    def stop(self, wait: bool = True) -> None:
        for job_id in self._job_ids:
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)
        self._job_ids = []
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            self.scheduler = AsyncIOScheduler(timezone=self.timezone)

    # ------------------------------------------------------------------
    # Tax schedule firing
    # ------------------------------------------------------------------
    async def fire_schedule(self, schedule: Schedule) -> List[str]:
        logger.info("Processing tax reminder: %s", schedule.name)
        try:
            customers = self.customers.list_customers()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not list customers for schedule %s", schedule.id)
            return []

        task_ids: List[str] = []
        for customer in customers:
            try:
                task_ids.append(self._enqueue_for_customer(customer, schedule))
            except Exception:  # pylint: disable=broad-except
                logger.exception("Failed to queue %s for customer %s", schedule.id, customer.id)
        logger.info("Tax reminder %s queued for %d/%d customer(s)", schedule.id, len(task_ids), len(customers))
        return task_ids

    def _enqueue_for_customer(self, customer: Customer, schedule: Schedule) -> str:
        now = self.clock()
        if self.credentials.is_valid(customer.id):
            return self.processor.schedule_reminder(
                customer.id,
                schedule.tax_type.value,
                schedule.reminder_message,
                scheduled_at=now,
                schedule_id=schedule.id,
            )
        return self.processor.schedule_reminder(
            customer.id,
            CREDENTIAL_REQUEST,
            (
                f"{schedule.name} is due soon ({schedule.due_date}) but we have no valid digital "
                "signature for you. Please supply or renew it so we can file on your behalf."
            ),
            scheduled_at=now,
            schedule_id=schedule.id,
        )

    # ------------------------------------------------------------------
    # Daily sweep
    # ------------------------------------------------------------------
    async def run_daily_check(self) -> List[Notification]:
        written: List[Notification] = []
        try:
            customers = self.customers.list_customers()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not list customers for the daily check")
            return written

        for customer in customers:
            credential = self.credentials.get_valid(customer.id)
            if credential is None:
                continue
            try:
                written.extend(await self._sweep_customer(customer, credential))
            except Exception:  # pylint: disable=broad-except
                logger.exception("Daily check failed for customer %s", customer.id)

        written.extend(await self.check_expiring_credentials())
        logger.info("Daily check wrote %d notification(s)", len(written))
        return written

    async def _sweep_customer(self, customer: Customer, credential: Credential) -> List[Notification]:
        token = await with_timeout(self.gateway.authenticate(credential), self.gateway_timeout)
        written: List[Notification] = []
        for sweep in (self._check_upcoming_deadlines, self._check_overdue, self._check_invoices):
            try:
                notification = await sweep(customer, token)
            except Exception:  # pylint: disable=broad-except
                logger.exception("%s failed for customer %s", sweep.__name__.lstrip("_"), customer.id)
                continue
            if notification is not None:
                written.append(notification)
        return written

    async def _check_upcoming_deadlines(self, customer: Customer, token: str) -> Optional[Notification]:
        deadlines = await with_timeout(self.gateway.get_deadlines(customer.id, token), self.gateway_timeout)
        now = self.clock()
        upcoming = [d for d in deadlines if 0 < d.days_until(now) <= self.upcoming_window_days]
        if not upcoming:
            return None
        listing = ", ".join(f"{d.tax_type} ({d.due_date.date().isoformat()})" for d in upcoming)
        return await self.dispatcher.notify(
            customer.id,
            f"Upcoming tax deadlines within {self.upcoming_window_days} days: {listing}",
            NotificationType.REMINDER,
            tag="declaration-expiry",
            data={"count": len(upcoming)},
        )

    async def _check_overdue(self, customer: Customer, token: str) -> Optional[Notification]:
        info = await with_timeout(self.gateway.get_personal_info(customer.id, token), self.gateway_timeout)
        if info.remaining_amount <= 0:
            return None
        text = f"You have unpaid tax: {format_vnd(info.remaining_amount)}"
        if info.penalties:
            text += f" (late penalty {format_vnd(info.penalties)})"
        return await self.dispatcher.notify(
            customer.id,
            text,
            NotificationType.OVERDUE,
            data={"amount": info.remaining_amount, "penalties": info.penalties},
        )

    async def _check_invoices(self, customer: Customer, token: str) -> Optional[Notification]:
        invoices = await with_timeout(self.gateway.get_invoices(customer.id, token), self.gateway_timeout)
        problematic = [invoice for invoice in invoices if invoice.is_problematic]
        if not problematic:
            return None
        listing = ", ".join(f"{inv.invoice_number}: {inv.status}" for inv in problematic)
        return await self.dispatcher.notify(
            customer.id,
            f"{len(problematic)} electronic invoice(s) need attention - {listing}",
            NotificationType.WARNING,
            tag="invoice-warning",
            data={"count": len(problematic)},
        )

    async def check_expiring_credentials(self, days: Optional[int] = None) -> List[Notification]:
        days = self.credential_expiry_days if days is None else days
        now = self.clock()
        written: List[Notification] = []
        for credential in self.credentials.expiring_soon(days, now=now):
            days_left = max(0, (credential.valid_to - now).days)
            try:
                written.append(
                    await self.dispatcher.notify(
                        credential.customer_id,
                        f"Your digital signature expires in {days_left} day(s)",
                        NotificationType.WARNING,
                        tag="signature-expiry",
                        data={"days_left": days_left},
                    )
                )
            except Exception:  # pylint: disable=broad-except
                logger.exception("Expiry warning failed for customer %s", credential.customer_id)
        return written

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def get_schedules(self) -> List[Schedule]:
        return list(self.schedules)

    def get_notification_stats(self) -> Dict[str, int]:
        return self.dispatcher.log.stats()

    def next_fire_times(self) -> Dict[str, Any]:
        now = self.clock()
        return {schedule.id: schedule.rule.next_fire_time(now) for schedule in self.schedules if schedule.is_active}


def load_schedules(items: Optional[Iterable[Mapping[str, Any]]], default_timezone: str = DEFAULT_TIMEZONE) -> List[Schedule]:
    if not items:
        return list(TAX_SCHEDULES)
    return [schedule_from_config(item, default_timezone) for item in items]


__all__ = [
    "CalendarScheduler",
    "DAILY_CHECK_JOB_ID",
    "TAX_SCHEDULES",
    "load_schedules",
    "schedule_from_config",
]
