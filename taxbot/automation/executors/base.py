"""Handler interfaces for the automation engine."""
from __future__ import annotations

import abc
import asyncio
from typing import Awaitable, ClassVar, FrozenSet, Optional, Tuple, TypeVar

from attrs import define, field

from taxbot.automation.models import Credential, ProcessingResult, Task, TaskType
from taxbot.automation.notifications import NotificationDispatcher
from taxbot.integrations.credentials import CredentialStore
from taxbot.integrations.etax import DEFAULT_TIMEOUT, GatewayError, TaxGateway

T = TypeVar("T")

NO_CREDENTIAL = "no credential found"

# failures a handler reports as a result instead of raising
RECOVERABLE_ERRORS = (GatewayError, asyncio.TimeoutError)


async def with_timeout(awaitable: Awaitable[T], seconds: Optional[float]) -> T:
    if not seconds:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=seconds)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "eTax gateway call timed out"
    return str(exc) or exc.__class__.__name__


@define(init=False)
class Handler(abc.ABC):
    """Maps a task's payload to a :class:`ProcessingResult`.

    Handlers never touch the queue; the processor owns task state.
    """

    task_types: ClassVar[FrozenSet[TaskType]] = frozenset()

    def can_handle(self, task: Task) -> bool:
        return task.task_type in self.task_types

    @abc.abstractmethod
    async def handle(self, task: Task) -> ProcessingResult:
        raise NotImplementedError


@define(slots=False)
class GatewayHandler(Handler):
    """Base for handlers that act on the customer's behalf at the eTax gateway."""

    credentials: CredentialStore
    gateway: TaxGateway
    dispatcher: NotificationDispatcher
    timeout: float = field(default=DEFAULT_TIMEOUT)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await with_timeout(awaitable, self.timeout)

    async def _login(self, customer_id: str) -> Tuple[Optional[Credential], Optional[str]]:
        credential = self.credentials.get_valid(customer_id)
        if credential is None:
            return None, None
        token = await self._call(self.gateway.authenticate(credential))
        return credential, token


__all__ = [
    "GatewayHandler",
    "Handler",
    "NO_CREDENTIAL",
    "RECOVERABLE_ERRORS",
    "describe_error",
    "with_timeout",
]
