"""Polling of a submitted declaration's status."""
from __future__ import annotations

from attrs import define

from taxbot.automation.executors.base import (
    NO_CREDENTIAL,
    RECOVERABLE_ERRORS,
    GatewayHandler,
    describe_error,
)
from taxbot.automation.models import NotificationType, ProcessingResult, Task, TaskType

STATUS_MESSAGES = {
    "approved": "Your tax declaration has been approved",
    "rejected": "Your tax declaration has been rejected",
    "processing": "Your tax declaration is being processed",
}


@define(slots=False)
class StatusCheckHandler(GatewayHandler):
    """The returned status is informational; only a failed query fails the task."""

    task_types = frozenset({TaskType.STATUS_CHECK})

    async def handle(self, task: Task) -> ProcessingResult:
        declaration_id = (task.payload or {}).get("declaration_id")
        if not declaration_id:
            return ProcessingResult.failure("missing declaration_id")
        try:
            credential, token = await self._login(task.customer_id)
            if credential is None:
                return ProcessingResult.failure(NO_CREDENTIAL)
            declaration = await self._call(self.gateway.check_declaration_status(declaration_id, token))
        except RECOVERABLE_ERRORS as exc:
            return ProcessingResult.failure(describe_error(exc))

        text = STATUS_MESSAGES.get(declaration.status)
        if text:
            await self.dispatcher.notify(
                task.customer_id,
                text,
                NotificationType.STATUS,
                data={"declaration_id": declaration_id, "status": declaration.status},
                tag="declaration-status",
            )
        return ProcessingResult.ok("Declaration status checked", data={"status": declaration.status})


__all__ = ["STATUS_MESSAGES", "StatusCheckHandler"]
