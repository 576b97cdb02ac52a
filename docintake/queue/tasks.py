"""Background maintenance tasks.

Uses arq (async Redis queue) for scheduled jobs: purging expired conversation
sessions and stale rate-limit counters, and retrying review-queue
submissions that failed while the queue was unreachable.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from docintake.intake.factory import build_state_machine
from docintake.intake.machine import IntakeStateMachine
from docintake.session.manager import SessionManager
from docintake.shared.config import get_settings

logger = logging.getLogger(__name__)


async def purge_expired_sessions(ctx: dict[str, Any]) -> int:
    """Remove expired sessions and stale rate-limit counters.

    Args:
        ctx: arq context (contains the session manager set up at startup)

    Returns:
        Number of records removed
    """
    sessions: SessionManager = ctx["sessions"]
    removed = await sessions.purge_expired()
    logger.info(f"Session purge removed {removed} records")
    return removed


async def resubmit_pending_reviews(ctx: dict[str, Any]) -> int:
    """Hand documents the review queue could not take earlier back to it.

    Args:
        ctx: arq context (contains the state machine set up at startup)

    Returns:
        Number of documents resubmitted
    """
    machine: IntakeStateMachine = ctx["state_machine"]
    return await machine.resubmit_pending_reviews()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts. Initializes shared services
    to avoid re-creating them for each job.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    machine = build_state_machine(settings)
    ctx["state_machine"] = machine
    ctx["sessions"] = machine.sessions
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    sessions: SessionManager | None = ctx.get("sessions")
    if sessions is not None:
        await sessions.backend.close()


def purge_minutes(interval: int) -> set[int]:
    """Minutes of the hour at which a job running every ``interval`` minutes fires."""
    return set(range(0, 60, interval))


def redis_settings_from_url(url: str) -> RedisSettings:
    """Translate a redis:// URL into arq RedisSettings."""
    parsed = urlparse(url)
    database = int(parsed.path.lstrip("/") or 0)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=database,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Cron jobs to register
    - Redis connection settings
    """

    functions = [purge_expired_sessions, resubmit_pending_reviews]
    cron_jobs = [
        cron(
            purge_expired_sessions,
            minute=purge_minutes(get_settings().purge_interval_minutes),
            run_at_startup=True,
        ),
        cron(
            resubmit_pending_reviews,
            minute=purge_minutes(get_settings().review_retry_interval_minutes),
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings_from_url(get_settings().redis_url)
    max_jobs = 10
    job_timeout = 300
