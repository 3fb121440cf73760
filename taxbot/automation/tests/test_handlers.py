"""Tests for the declaration, payment, reminder and status-check handlers."""
from __future__ import annotations

import asyncio

from taxbot.automation.executors.declaration import DeclarationHandler
from taxbot.automation.executors.payment import PaymentHandler, format_vnd
from taxbot.automation.executors.reminder import ReminderHandler
from taxbot.automation.executors.status_check import StatusCheckHandler
from taxbot.automation.models import NotificationType, Task, TaskStatus, TaskType
from taxbot.automation.processor import TaskProcessor
from taxbot.automation.queue import TaskQueue
from taxbot.automation.tests.fakes import (
    FakeClock,
    FakeGateway,
    customer,
    make_credentials,
    make_dispatcher,
    task_kwargs,
)
from taxbot.integrations.push import PushDeliveryError, PushNotificationService, PushSubscription


def run(coro):
    return asyncio.run(coro)


def gateway_handler(cls, gateway=None, *customer_ids, **kwargs):
    clock = FakeClock()
    dispatcher = make_dispatcher(customer("c1"))
    handler = cls(
        credentials=make_credentials(clock, *customer_ids),
        gateway=gateway or FakeGateway(),
        dispatcher=dispatcher,
        **kwargs,
    )
    return handler, dispatcher


def test_declaration_submits_and_confirms() -> None:
    gateway = FakeGateway()
    handler, dispatcher = gateway_handler(DeclarationHandler, gateway, "c1")
    task = Task(**task_kwargs(task_type=TaskType.DECLARATION, payload={"declaration_data": {"income": 1}}))

    result = run(handler.handle(task))

    assert result.success
    assert result.data == {"declaration_id": "decl-c1"}
    assert gateway.called("submit_declaration") == 1
    assert [n.type for n in dispatcher.log.list("c1")] == [NotificationType.SUCCESS]
    subjects = [mail.subject for mail in dispatcher.email.sent]
    assert "Tax declaration confirmation" in subjects


def test_declaration_without_credential_skips_gateway() -> None:
    gateway = FakeGateway()
    handler, _ = gateway_handler(DeclarationHandler, gateway)

    result = run(handler.handle(Task(**task_kwargs(task_type=TaskType.DECLARATION))))

    assert not result.success
    assert result.message == "no credential found"
    assert gateway.calls == []


def test_gateway_error_becomes_failed_result() -> None:
    gateway = FakeGateway(errors={"submit_declaration": {"*"}})
    handler, dispatcher = gateway_handler(DeclarationHandler, gateway, "c1")

    result = run(handler.handle(Task(**task_kwargs(task_type=TaskType.DECLARATION))))

    assert not result.success
    assert "unavailable" in result.message
    assert dispatcher.log.list() == []


def test_slow_gateway_call_times_out() -> None:
    gateway = FakeGateway(delay=0.5)
    handler, _ = gateway_handler(StatusCheckHandler, gateway, "c1", timeout=0.05)
    task = Task(**task_kwargs(task_type=TaskType.STATUS_CHECK, payload={"declaration_id": "d1"}))

    result = run(handler.handle(task))

    assert not result.success
    assert result.message == "eTax gateway call timed out"


def test_payment_with_nothing_due_completes_on_first_tick() -> None:
    gateway = FakeGateway(remaining=0)
    handler, _ = gateway_handler(PaymentHandler, gateway, "c1")
    processor = TaskProcessor(TaskQueue(), [handler], enable_background=False)
    task_id = processor.schedule_payment("c1")

    run(processor.tick())

    task = processor.get_task(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.retry_count == 0
    assert task.result.message == "nothing due"
    assert gateway.called("submit_payment") == 0


def test_payment_pays_remaining_balance() -> None:
    gateway = FakeGateway(remaining=1500000)
    handler, dispatcher = gateway_handler(PaymentHandler, gateway, "c1")

    result = run(handler.handle(Task(**task_kwargs(task_type=TaskType.PAYMENT))))

    assert result.success
    assert result.data == {"amount": 1500000, "reference": "ref-1"}
    assert dispatcher.log.list()[0].message == "Tax paid successfully - amount: 1.500.000 VND"


def test_format_vnd_uses_dot_grouping() -> None:
    assert format_vnd(2500) == "2.500 VND"
    assert format_vnd(0) == "0 VND"


def test_reminder_falls_back_to_email_when_push_fails() -> None:
    async def broken_transport(subscription, payload):
        raise PushDeliveryError("push service down", status_code=500)

    push = PushNotificationService(transport=broken_transport)
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/1"))
    dispatcher = make_dispatcher(customer("c1"), push=push)
    processor = TaskProcessor(TaskQueue(), [ReminderHandler(dispatcher=dispatcher)], enable_background=False)
    task_id = processor.schedule_reminder("c1", "monthly", "Reminder: Monthly personal income tax - due: 20")

    run(processor.tick())

    task = processor.get_task(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.result.data == {"channel": "email"}
    assert len(dispatcher.email.sent) == 1
    assert dispatcher.email.sent[0].to == "c1@example.vn"
    assert push.subscriptions("c1")


def test_reminder_without_any_channel_still_succeeds() -> None:
    dispatcher = make_dispatcher(customer("c1", email=None))
    handler = ReminderHandler(dispatcher=dispatcher)

    result = run(handler.handle(Task(**task_kwargs(payload={"message": "hi", "schedule_id": "s1"}))))

    assert result.success
    assert result.data == {"channel": "none"}
    entry = dispatcher.log.list("c1")[0]
    assert entry.schedule_id == "s1"
    assert entry.type is NotificationType.REMINDER


def test_reminder_fails_when_email_fallback_raises() -> None:
    class BrokenOutbox:
        async def send(self, to, subject, body):
            raise ConnectionError("smtp down")

    dispatcher = make_dispatcher(customer("c1"))
    dispatcher.email = BrokenOutbox()
    processor = TaskProcessor(TaskQueue(), [ReminderHandler(dispatcher=dispatcher)], enable_background=False)
    task_id = processor.schedule_reminder("c1", "monthly", "pay")

    run(processor.tick())

    task = processor.get_task(task_id)
    assert task.status is TaskStatus.PENDING
    assert task.retry_count == 1
    assert "smtp down" in task.result.message


def test_status_check_notifies_known_status() -> None:
    gateway = FakeGateway(status="rejected")
    handler, dispatcher = gateway_handler(StatusCheckHandler, gateway, "c1")
    task = Task(**task_kwargs(task_type=TaskType.STATUS_CHECK, payload={"declaration_id": "d1"}))

    result = run(handler.handle(task))

    assert result.success
    assert result.data == {"status": "rejected"}
    assert dispatcher.log.list()[0].message == "Your tax declaration has been rejected"


def test_status_check_requires_declaration_id() -> None:
    gateway = FakeGateway()
    handler, _ = gateway_handler(StatusCheckHandler, gateway, "c1")

    result = run(handler.handle(Task(**task_kwargs(task_type=TaskType.STATUS_CHECK))))

    assert not result.success
    assert gateway.calls == []


def test_reminder_falls_back_to_email_when_push_hangs() -> None:
    async def hanging_transport(subscription, payload):
        await asyncio.sleep(5)

    push = PushNotificationService(transport=hanging_transport)
    push.subscribe("c1", PushSubscription(endpoint="https://push.example/1"))
    dispatcher = make_dispatcher(customer("c1"), push=push)
    dispatcher.push_timeout = 0.05
    processor = TaskProcessor(TaskQueue(), [ReminderHandler(dispatcher=dispatcher)], enable_background=False)
    task_id = processor.schedule_reminder("c1", "monthly", "pay")

    run(processor.tick())

    task = processor.get_task(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.result.data == {"channel": "email"}
