"""Shared APScheduler factory for the automation engine."""
from __future__ import annotations

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taxbot.automation.models import DEFAULT_TIMEZONE

# poll ticks and calendar firings must not pile up after a stall
JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 300,
}


def create_async_scheduler(timezone: str = DEFAULT_TIMEZONE) -> AsyncIOScheduler:
    return AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults=dict(JOB_DEFAULTS),
        timezone=timezone,
    )


__all__ = ["JOB_DEFAULTS", "create_async_scheduler"]
