"""Tests for the tax calendar and the daily sweep."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from taxbot.automation.models import NotificationType, RecurrenceRule, TaskType
from taxbot.automation.processor import TaskProcessor
from taxbot.automation.queue import TaskQueue
from taxbot.automation.tax_calendar import (
    DAILY_CHECK_JOB_ID,
    TAX_SCHEDULES,
    CalendarScheduler,
    load_schedules,
)
from taxbot.automation.tests.fakes import (
    START,
    FakeClock,
    FakeGateway,
    customer,
    make_credential,
    make_credentials,
    make_dispatcher,
)
from taxbot.integrations.customers import StaticCustomerDirectory
from taxbot.integrations.etax import ElectronicInvoice, TaxDeadline


def run(coro):
    return asyncio.run(coro)


def make_calendar(*customer_ids, with_credentials=(), gateway=None, clock=None):
    clock = clock or FakeClock()
    customers = [customer(cid) for cid in customer_ids]
    dispatcher = make_dispatcher(*customers)
    processor = TaskProcessor(TaskQueue(), [], dispatcher=dispatcher, clock=clock, enable_background=False)
    calendar = CalendarScheduler(
        processor=processor,
        customers=StaticCustomerDirectory(customers),
        credentials=make_credentials(clock, *with_credentials),
        gateway=gateway or FakeGateway(),
        dispatcher=dispatcher,
        clock=clock,
    )
    return calendar, processor, dispatcher


def by_id(schedule_id):
    return next(schedule for schedule in TAX_SCHEDULES if schedule.id == schedule_id)


def test_failing_customer_does_not_block_the_others() -> None:
    gateway = FakeGateway(
        errors={"get_deadlines": {"a"}},
        deadlines={"b": [TaxDeadline(tax_type="VAT", due_date=START + timedelta(days=3))]},
    )
    calendar, _, dispatcher = make_calendar("a", "b", with_credentials=("a", "b"), gateway=gateway)

    written = run(calendar.run_daily_check())

    assert [(n.customer_id, n.type) for n in written] == [("b", NotificationType.REMINDER)]
    assert "VAT (2026-10-21)" in written[0].message
    assert dispatcher.log.list("a") == []


def test_deadlines_outside_the_window_are_ignored() -> None:
    gateway = FakeGateway(
        deadlines={
            "a": [
                TaxDeadline(tax_type="PIT", due_date=START - timedelta(days=1)),
                TaxDeadline(tax_type="VAT", due_date=START + timedelta(days=8)),
            ]
        }
    )
    calendar, _, _ = make_calendar("a", with_credentials=("a",), gateway=gateway)

    assert run(calendar.run_daily_check()) == []


def test_daily_check_reports_overdue_balance_and_bad_invoices() -> None:
    gateway = FakeGateway(
        remaining=2500000,
        penalties=12000,
        invoices={"a": [ElectronicInvoice("HD01", "valid"), ElectronicInvoice("HD02", "rejected")]},
    )
    calendar, _, _ = make_calendar("a", "b", with_credentials=("a",), gateway=gateway)

    written = run(calendar.run_daily_check())

    assert [n.type for n in written] == [NotificationType.OVERDUE, NotificationType.WARNING]
    assert written[0].message == "You have unpaid tax: 2.500.000 VND (late penalty 12.000 VND)"
    assert "HD02: rejected" in written[1].message
    assert {customer_id for _, customer_id in gateway.calls} == {"a"}


def test_firing_a_schedule_only_enqueues_reminders() -> None:
    gateway = FakeGateway()
    calendar, processor, dispatcher = make_calendar("c1", "c2", with_credentials=("c1",), gateway=gateway)
    schedule = by_id("monthly_personal")

    task_ids = run(calendar.fire_schedule(schedule))

    tasks = [processor.get_task(task_id) for task_id in task_ids]
    assert [task.customer_id for task in tasks] == ["c1", "c2"]
    assert all(task.task_type is TaskType.REMINDER for task in tasks)
    assert all(task.payload["schedule_id"] == "monthly_personal" for task in tasks)
    assert tasks[0].payload["reminder_type"] == "monthly"
    assert tasks[0].payload["message"] == "Reminder: Monthly personal income tax - due: 20"
    assert tasks[1].payload["reminder_type"] == "credential_request"
    assert gateway.calls == []
    assert dispatcher.log.list() == []


def test_expiring_credentials_are_warned() -> None:
    clock = FakeClock()
    calendar, _, _ = make_calendar("c1", "c2", clock=clock)
    calendar.credentials.save(make_credential("c1", START, days=10))
    calendar.credentials.save(make_credential("c2", START, days=90))

    written = run(calendar.check_expiring_credentials())

    assert [n.customer_id for n in written] == ["c1"]
    assert written[0].message == "Your digital signature expires in 10 day(s)"
    assert written[0].type is NotificationType.WARNING


def test_register_jobs_uses_stable_ids() -> None:
    calendar, _, _ = make_calendar()

    job_ids = calendar.register_jobs()

    assert job_ids == [f"schedule:{s.id}" for s in TAX_SCHEDULES] + [DAILY_CHECK_JOB_ID]
    assert calendar.scheduler.get_job(DAILY_CHECK_JOB_ID) is not None
    calendar.stop()
    assert calendar.scheduler.get_job(DAILY_CHECK_JOB_ID) is None


def test_next_fire_times_follow_local_time() -> None:
    calendar, _, _ = make_calendar()

    fire_times = calendar.next_fire_times()

    assert fire_times["monthly_personal"] == datetime(2026, 10, 20, 2, 0, tzinfo=timezone.utc)
    assert fire_times["quarterly_vat"] == datetime(2026, 10, 30, 2, 0, tzinfo=timezone.utc)
    assert fire_times["provisional_tax"] == datetime(2026, 12, 15, 2, 0, tzinfo=timezone.utc)
    assert fire_times["annual_finalization"] == datetime(2027, 3, 30, 2, 0, tzinfo=timezone.utc)


def test_recurrence_rule_validation() -> None:
    with pytest.raises(ValueError):
        RecurrenceRule(day=32)
    with pytest.raises(ValueError):
        RecurrenceRule(day=1, months=(13,))
    with pytest.raises(ValueError):
        RecurrenceRule(day=31, months=(2,))
    with pytest.raises(ValueError):
        RecurrenceRule(day=31, months=(4, 6, 9, 11))
    with pytest.raises(ValueError):
        RecurrenceRule(day=20, timezone="Asia/Hanoi_Typo")
    assert RecurrenceRule(day=5, months=[10, 4, 4]).months == (4, 10)
    assert RecurrenceRule(day=31, months=(2, 3)).to_trigger() is not None
    assert RecurrenceRule(day=29, months=(2,)).day == 29


def test_load_schedules_from_config() -> None:
    assert load_schedules(None) == list(TAX_SCHEDULES)

    schedules = load_schedules(
        [{"id": "custom", "name": "Custom", "rule": {"day": 10, "hour": 7}, "due_date": "10", "tax_type": "monthly"}],
        "UTC",
    )

    assert schedules[0].rule.timezone == "UTC"
    assert schedules[0].reminder_message == "Reminder: Custom - due: 10"
