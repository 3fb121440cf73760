"""Automatic payment of outstanding tax."""
from __future__ import annotations

import logging

from attrs import define

from taxbot.automation.executors.base import (
    NO_CREDENTIAL,
    RECOVERABLE_ERRORS,
    GatewayHandler,
    describe_error,
)
from taxbot.automation.models import NotificationType, ProcessingResult, Task, TaskType

logger = logging.getLogger(__name__)


def format_vnd(amount: float) -> str:
    return f"{amount:,.0f}".replace(",", ".") + " VND"


@define(slots=False)
class PaymentHandler(GatewayHandler):
    """Pays the customer's remaining balance.

    A zero (or negative) balance is a successful no-op, so firing the same
    payment task twice never pays twice.
    """

    task_types = frozenset({TaskType.PAYMENT})

    async def handle(self, task: Task) -> ProcessingResult:
        payload = task.payload or {}
        try:
            credential, token = await self._login(task.customer_id)
            if credential is None:
                return ProcessingResult.failure(NO_CREDENTIAL)
            info = await self._call(self.gateway.get_personal_info(task.customer_id, token))
            if info.remaining_amount <= 0:
                return ProcessingResult.ok("nothing due", data={"amount": 0})
            receipt = await self._call(
                self.gateway.submit_payment(
                    task.customer_id,
                    info.remaining_amount,
                    payload.get("payment_data") or {},
                    token,
                )
            )
        except RECOVERABLE_ERRORS as exc:
            return ProcessingResult.failure(describe_error(exc))

        logger.info("Paid %s for customer %s", format_vnd(receipt.amount), task.customer_id)
        await self.dispatcher.notify(
            task.customer_id,
            f"Tax paid successfully - amount: {format_vnd(receipt.amount)}",
            NotificationType.SUCCESS,
            data={"amount": receipt.amount},
        )
        data = {"amount": receipt.amount}
        if receipt.reference:
            data["reference"] = receipt.reference
        return ProcessingResult.ok("Tax payment completed", data=data)


__all__ = ["PaymentHandler", "format_vnd"]
