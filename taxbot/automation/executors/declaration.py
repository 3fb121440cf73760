"""Automatic submission of tax declarations."""
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


@define(slots=False)
class DeclarationHandler(GatewayHandler):
    task_types = frozenset({TaskType.DECLARATION})

    async def handle(self, task: Task) -> ProcessingResult:
        payload = task.payload or {}
        try:
            credential, token = await self._login(task.customer_id)
            if credential is None:
                return ProcessingResult.failure(NO_CREDENTIAL)
            declaration = await self._call(
                self.gateway.submit_declaration(
                    task.customer_id,
                    payload.get("declaration_data") or {},
                    payload.get("documents") or [],
                    credential,
                    token,
                )
            )
        except RECOVERABLE_ERRORS as exc:
            return ProcessingResult.failure(describe_error(exc))

        logger.info("Declaration %s submitted for customer %s", declaration.declaration_id, task.customer_id)
        await self.dispatcher.notify(
            task.customer_id,
            f"Tax declaration submitted successfully - id: {declaration.declaration_id}",
            NotificationType.SUCCESS,
            data={"declaration_id": declaration.declaration_id},
        )
        await self._send_confirmation(task.customer_id, declaration)
        return ProcessingResult.ok(
            "Tax declaration submitted",
            data={"declaration_id": declaration.declaration_id},
        )

    async def _send_confirmation(self, customer_id: str, declaration) -> None:
        submitted = declaration.submission_date.date().isoformat() if declaration.submission_date else "-"
        body = (
            "Your tax declaration was submitted successfully.\n\n"
            f"Declaration id: {declaration.declaration_id}\n"
            f"Declaration type: {declaration.declaration_type or '-'}\n"
            f"Tax period: {declaration.tax_period or '-'}\n"
            f"Submitted on: {submitted}\n\n"
            "We will keep tracking it and let you know when its status changes."
        )
        try:
            await self.dispatcher.email_customer(customer_id, "Tax declaration confirmation", body)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Confirmation email for customer %s failed: %s", customer_id, exc)


__all__ = ["DeclarationHandler"]
