"""Run the tax automation engine as a long-lived process."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import suppress
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


async def _serve(run_daily_check: bool) -> None:
    from taxbot.automation.runtime import AutomationService

    service = AutomationService.from_global_config()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    service.start()
    logger.info("Automation engine running with %d schedule(s)", len(service.get_schedules()))
    if run_daily_check:
        await service.calendar.run_daily_check()
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping automation engine; stats: %s", service.get_stats())
        await service.aclose()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="TaxBot tax automation engine")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load before reading config")
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    parser.add_argument(
        "--daily-check-now",
        action="store_true",
        help="run the daily deadline/overdue/invoice sweep once at startup",
    )
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(_serve(args.daily_check_now))
    except KeyboardInterrupt:  # pragma: no cover
        logger.info("Automation engine stopped by user")


if __name__ == "__main__":  # pragma: no cover
    main()
