"""Run the scheduler sweep outside the API process.

Dispatches due publish attempts and callback deliveries from the Redis
schedule. Only one sweep dispatches at a time, so several copies of this
process (and API processes with ``SCHEDULER_ENABLED=true``) may run side
by side.

Usage:
    python -m scripts.run_scheduler
    python -m scripts.run_scheduler --once   # run a single sweep and exit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from src.core.config import get_settings
from src.core.logging_config import configure_logging
from src.core.redis import create_redis_client, verify_redis_connectivity
from src.core.tasks.scheduler import run_scheduler
from src.publishing.services import create_services

logger = logging.getLogger(__name__)


async def main(once: bool = False) -> int:
    settings = get_settings()
    configure_logging(settings)

    if settings.store_backend != "redis":
        logger.error("A standalone scheduler needs STORE_BACKEND=redis")
        return 1

    redis_client = create_redis_client(settings)
    if not await verify_redis_connectivity(redis_client):
        logger.error("Redis is not reachable at %s", settings.redis_url)
        await redis_client.aclose()
        return 1

    services = create_services(settings, redis_client)
    try:
        if once:
            dispatched = await services.scheduler.run_due()
            logger.info("Dispatched %d scheduled job(s)", dispatched)
            return 0

        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_event.set)
        await run_scheduler(services.scheduler, shutdown_event, settings.scheduler_poll_interval_seconds)
        return 0
    finally:
        await redis_client.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the PostRelay scheduler")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(once=args.once)))
