"""Register the daily retention tick with rq-scheduler and run the scheduler loop."""
from __future__ import annotations

import redis
from rq_scheduler import Scheduler

from src.core.config import Settings, get_settings
from src.queue.jobs import run_retention_tick
from src.utils.logger import configure_logging, logger

RETENTION_JOB_ID = "bounce-retention-tick"


def get_scheduler(settings: Settings) -> Scheduler:
    connection = redis.Redis.from_url(settings.redis_url)
    return Scheduler(queue_name=settings.rq_queue_name, connection=connection)


def register_retention_job(scheduler: Scheduler, settings: Settings):
    """Replace any earlier registration so restarts never double-schedule."""

    for job in scheduler.get_jobs():
        if job.id == RETENTION_JOB_ID:
            scheduler.cancel(job)
    job = scheduler.cron(
        settings.report_cron,
        func=run_retention_tick,
        id=RETENTION_JOB_ID,
        queue_name=settings.rq_queue_name,
        use_local_timezone=False,
    )
    logger.info("Scheduled retention tick %r on queue %s", settings.report_cron, settings.rq_queue_name)
    return job


def run() -> None:
    configure_logging()
    settings = get_settings()
    scheduler = get_scheduler(settings)
    register_retention_job(scheduler, settings)
    scheduler.run()


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
