"""Runtime glue that wires the automation engine from configuration."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, List, Optional

from omegaconf import OmegaConf

from taxbot.automation.executors.declaration import DeclarationHandler
from taxbot.automation.executors.payment import PaymentHandler
from taxbot.automation.executors.reminder import ReminderHandler
from taxbot.automation.executors.status_check import StatusCheckHandler
from taxbot.automation.models import DEFAULT_TIMEZONE, Clock, utcnow
from taxbot.automation.notifications import NotificationDispatcher, NotificationLog
from taxbot.automation.processor import DEFAULT_BASE_DELAY, DEFAULT_POLL_INTERVAL, TaskProcessor
from taxbot.automation.queue import TaskQueue
from taxbot.automation.store.interface import TaskStoreProtocol
from taxbot.automation.store.memory import MemoryTaskStore
from taxbot.automation.tax_calendar import CalendarScheduler, load_schedules
from taxbot.integrations.credentials import CredentialStore
from taxbot.integrations.customers import CustomerDirectory, JsonCustomerDirectory
from taxbot.integrations.email import EmailChannel, MemoryOutbox, SMTPEmailChannel
from taxbot.integrations.etax import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, ETaxGateway, TaxGateway
from taxbot.integrations.push import PushNotificationService
from taxbot.utils.scheduler import create_async_scheduler

logger = logging.getLogger(__name__)


def _to_dict(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    try:
        return OmegaConf.to_container(data, resolve=True)  # type: ignore[return-value]
    except Exception:  # pylint: disable=broad-except
        return {}


class AutomationService:
    """Build and run the task processor and the tax calendar.

    Collaborators can be injected; anything left out is built from the
    ``automation`` section of the Hydra config.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        credentials: Optional[CredentialStore] = None,
        gateway: Optional[TaxGateway] = None,
        push: Optional[PushNotificationService] = None,
        email: Optional[EmailChannel] = None,
        customers: Optional[CustomerDirectory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        cfg = _to_dict(config)
        self.timezone = str(cfg.get("timezone", DEFAULT_TIMEZONE))
        self.clock = clock or utcnow

        processor_cfg = _to_dict(cfg.get("processor"))
        calendar_cfg = _to_dict(cfg.get("calendar"))
        gateway_cfg = _to_dict(cfg.get("gateway"))
        self.gateway_timeout = float(gateway_cfg.get("timeout", DEFAULT_TIMEOUT))

        self.store: TaskStoreProtocol = self._create_store(_to_dict(cfg.get("store")))
        self.credentials = credentials or CredentialStore(clock=self.clock)
        self.gateway = gateway or ETaxGateway(
            base_url=str(gateway_cfg.get("base_url") or DEFAULT_BASE_URL),
            timeout=self.gateway_timeout,
        )
        self.push = push or PushNotificationService()
        self.email = email or self._create_email(_to_dict(cfg.get("email")))
        self.customers = customers or self._create_customers(_to_dict(cfg.get("customers")))

        self.scheduler = create_async_scheduler(self.timezone)
        self.queue = TaskQueue(store=self.store)
        self.notification_log = NotificationLog(store=self.store)
        self.dispatcher = NotificationDispatcher(
            push=self.push,
            email=self.email,
            customers=self.customers,
            log=self.notification_log,
        )
        self.handlers = self._create_handlers()
        self.processor = TaskProcessor(
            self.queue,
            self.handlers,
            dispatcher=self.dispatcher,
            poll_interval=float(processor_cfg.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            base_delay=float(processor_cfg.get("base_retry_delay", DEFAULT_BASE_DELAY)),
            workers=int(processor_cfg.get("workers", 1)),
            clock=self.clock,
            scheduler=self.scheduler,
        )
        self.calendar_enabled = bool(calendar_cfg.get("enabled", True))
        self.calendar = CalendarScheduler(
            processor=self.processor,
            customers=self.customers,
            credentials=self.credentials,
            gateway=self.gateway,
            dispatcher=self.dispatcher,
            schedules=load_schedules(calendar_cfg.get("schedules"), self.timezone),
            timezone=self.timezone,
            daily_check_hour=int(calendar_cfg.get("daily_check_hour", 8)),
            daily_check_minute=int(calendar_cfg.get("daily_check_minute", 0)),
            upcoming_window_days=int(calendar_cfg.get("upcoming_window_days", 7)),
            credential_expiry_days=int(calendar_cfg.get("credential_expiry_days", 30)),
            gateway_timeout=self.gateway_timeout,
            clock=self.clock,
            scheduler=self.scheduler,
        )
        self._started = False

    @classmethod
    def from_global_config(cls, **collaborators: Any) -> "AutomationService":
        try:
            from taxbot.utils.hydra_config.init import conf  # type: ignore
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not load Hydra config; using defaults")
            return cls({}, **collaborators)
        return cls(getattr(conf, "automation", None), **collaborators)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Restore persisted tasks and start polling and calendar triggers.

        Needs a running asyncio event loop.
        """
        if self._started:
            return
        try:
            self.queue.restore()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to restore tasks from %s", type(self.store).__name__)
        self.processor.start()
        if self.calendar_enabled:
            self.calendar.start()
        self._started = True

    def stop(self, wait: bool = True) -> None:
        """Remove the poll and calendar jobs; the shared scheduler keeps running.

        ``start()`` may be called again afterwards. ``aclose()`` shuts the
        scheduler down.
        """
        if not self._started:
            return
        try:
            self.calendar.stop(wait=wait)
            self.processor.stop(wait=wait)
        finally:
            self._started = False

    async def aclose(self) -> None:
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # AsyncIOScheduler completes the shutdown on the next loop iteration
            await asyncio.sleep(0)
        closer = getattr(self.gateway, "aclose", None)
        if closer is not None:
            await closer()
        close_store = getattr(self.store, "close", None)
        with suppress(Exception):
            if close_store is not None:
                close_store()

    async def run_once(self) -> None:
        await self.processor.run_once()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def get_stats(self) -> Dict[str, int]:
        return self.processor.get_stats()

    def get_schedules(self) -> List[Any]:
        return self.calendar.get_schedules()

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------
    def _create_store(self, cfg: Dict[str, Any]) -> TaskStoreProtocol:
        kind = str(cfg.get("kind", "memory")).lower()
        if kind == "memory":
            return MemoryTaskStore()
        if kind == "duckdb":
            from taxbot.automation.store.duckdb_store import DuckDBTaskStore

            path_value = cfg.get("path")
            return DuckDBTaskStore(db_path=Path(path_value) if path_value else None)
        raise ValueError(f"unknown store kind: {kind!r}")

    def _create_email(self, cfg: Dict[str, Any]) -> EmailChannel:
        kind = str(cfg.get("kind", "memory")).lower()
        if kind == "memory":
            return MemoryOutbox()
        if kind == "smtp":
            return SMTPEmailChannel(
                host=str(cfg.get("host") or "localhost"),
                port=int(cfg.get("port", 587)),
                username=cfg.get("username"),
                password=cfg.get("password"),
                sender=str(cfg.get("sender") or "noreply@taxbot.vn"),
                use_tls=bool(cfg.get("use_tls", True)),
            )
        raise ValueError(f"unknown email kind: {kind!r}")

    def _create_customers(self, cfg: Dict[str, Any]) -> CustomerDirectory:
        return JsonCustomerDirectory(Path(str(cfg.get("path") or "submissions.json")).expanduser())

    def _create_handlers(self) -> List[Any]:
        shared = dict(
            credentials=self.credentials,
            gateway=self.gateway,
            dispatcher=self.dispatcher,
            timeout=self.gateway_timeout,
        )
        return [
            DeclarationHandler(**shared),
            PaymentHandler(**shared),
            ReminderHandler(dispatcher=self.dispatcher),
            StatusCheckHandler(**shared),
        ]


__all__ = ["AutomationService"]
