"""Shared fakes for the automation tests."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from attrs import define, field

from taxbot.automation.models import Credential, Customer, ProcessingResult, Task, TaskType
from taxbot.automation.executors.base import Handler
from taxbot.automation.notifications import NotificationDispatcher, NotificationLog
from taxbot.integrations.credentials import CredentialStore
from taxbot.integrations.customers import StaticCustomerDirectory
from taxbot.integrations.email import MemoryOutbox
from taxbot.integrations.etax import (
    ElectronicInvoice,
    GatewayError,
    PaymentReceipt,
    PersonalTaxInfo,
    TaxDeadline,
    TaxDeclaration,
)
from taxbot.integrations.push import PushNotificationService

START = datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@define(slots=False)
class FakeGateway:
    """Answers from canned data. ``errors`` maps a method name to the
    customer ids (or ``"*"``) for which it raises GatewayError."""

    remaining: float = 0.0
    penalties: float = 0.0
    status: str = "approved"
    deadlines: Dict[str, List[TaxDeadline]] = field(factory=dict)
    invoices: Dict[str, List[ElectronicInvoice]] = field(factory=dict)
    errors: Dict[str, Set[str]] = field(factory=dict)
    delay: float = 0.0
    calls: List[tuple] = field(factory=list)

    async def _enter(self, name: str, customer_id: str) -> None:
        self.calls.append((name, customer_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        failing = self.errors.get(name, set())
        if "*" in failing or customer_id in failing:
            raise GatewayError(f"{name} unavailable", status_code=503)

    async def authenticate(self, credential: Credential) -> str:
        await self._enter("authenticate", credential.customer_id)
        return f"token-{credential.customer_id}"

    async def get_personal_info(self, taxpayer_code: str, access_token: str) -> PersonalTaxInfo:
        await self._enter("get_personal_info", taxpayer_code)
        return PersonalTaxInfo(
            taxpayer_code=taxpayer_code,
            remaining_amount=self.remaining,
            penalties=self.penalties,
        )

    async def submit_declaration(self, taxpayer_code, declaration_data, documents, credential, access_token):
        await self._enter("submit_declaration", taxpayer_code)
        return TaxDeclaration(declaration_id=f"decl-{taxpayer_code}", status="submitted")

    async def submit_payment(self, taxpayer_code, amount, payment_data, access_token):
        await self._enter("submit_payment", taxpayer_code)
        return PaymentReceipt(amount=amount, reference="ref-1")

    async def check_declaration_status(self, declaration_id: str, access_token: str) -> TaxDeclaration:
        await self._enter("check_declaration_status", access_token.replace("token-", ""))
        return TaxDeclaration(declaration_id=declaration_id, status=self.status)

    async def get_deadlines(self, taxpayer_code: str, access_token: str) -> List[TaxDeadline]:
        await self._enter("get_deadlines", taxpayer_code)
        return list(self.deadlines.get(taxpayer_code, []))

    async def get_invoices(self, taxpayer_code: str, access_token: str) -> List[ElectronicInvoice]:
        await self._enter("get_invoices", taxpayer_code)
        return list(self.invoices.get(taxpayer_code, []))

    def called(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)


@define(slots=False)
class ScriptedHandler(Handler):
    """Fails ``failures`` times, then succeeds; ``raises`` turns failures into exceptions."""

    task_types = frozenset({TaskType.DECLARATION, TaskType.PAYMENT, TaskType.REMINDER, TaskType.STATUS_CHECK})

    failures: int = 0
    raises: bool = False
    seen: List[str] = field(factory=list)

    async def handle(self, task: Task) -> ProcessingResult:
        self.seen.append(task.id)
        if self.failures > 0:
            self.failures -= 1
            if self.raises:
                raise RuntimeError("boom")
            return ProcessingResult.failure("temporary failure")
        return ProcessingResult.ok("done")


def make_credential(customer_id: str, now: datetime = START, days: int = 365) -> Credential:
    return Credential(
        customer_id=customer_id,
        certificate_serial=f"serial-{customer_id}",
        valid_from=now - timedelta(days=1),
        valid_to=now + timedelta(days=days),
        issuer_name="VNPT-CA",
    )


def make_dispatcher(
    *customers: Customer,
    push: Optional[PushNotificationService] = None,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        push=push or PushNotificationService(),
        email=MemoryOutbox(),
        customers=StaticCustomerDirectory(customers),
        log=NotificationLog(),
    )


def make_credentials(clock: FakeClock, *customer_ids: str) -> CredentialStore:
    store = CredentialStore(clock=clock)
    for customer_id in customer_ids:
        store.save(make_credential(customer_id, clock()))
    return store


def customer(customer_id: str, email: Optional[str] = "") -> Customer:
    if email == "":
        email = f"{customer_id}@example.vn"
    return Customer(id=customer_id, first_name="Nguyen", last_name=customer_id.upper(), email=email)


def task_kwargs(**overrides: Any) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "customer_id": "c1",
        "task_type": TaskType.REMINDER,
        "scheduled_at": START - timedelta(seconds=1),
    }
    base.update(overrides)
    return base
