"""arq worker runner.

Run with: python -m docintake.queue.worker
Or: arq docintake.queue.tasks.WorkerSettings

This module configures and runs the maintenance worker.
"""

import logging

from arq import run_worker

from docintake.queue.tasks import WorkerSettings
from docintake.shared.config import get_settings


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(__name__)

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Session purge every {settings.purge_interval_minutes} minutes")

    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
