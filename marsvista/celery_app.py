"""
Celery application setup for MarsVista.

Configures Celery from application settings so workers and schedulers share
the same broker/result backend. Tasks live in marsvista.core.tasks.

Queue Architecture:
- scraping: Upstream scrape jobs (long-running, politely throttled)
- maintenance: Housekeeping such as failing stuck scrape jobs

Beat runs the incremental scrape daily (INCREMENTAL_SCRAPE_CRON, UTC) and
the stuck-job cleanup hourly.
"""
import os

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from marsvista.config import settings


def _bool(val: str, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).lower() in {"1", "true", "yes", "on"}


def _parse_cron(expr: str) -> crontab:
    """Parse "minute hour day month day_of_week"; falls back to daily at 2 AM."""
    parts = (expr or "").split()
    if len(parts) != 5:
        return crontab(hour=2, minute=0)
    try:
        return crontab(
            minute=parts[0],
            hour=parts[1],
            day_of_month=parts[2],
            month_of_year=parts[3],
            day_of_week=parts[4],
        )
    except ValueError:
        return crontab(hour=2, minute=0)


app = Celery(
    "marsvista",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["marsvista.core.tasks.scrape"],
)

app.conf.task_queues = (
    Queue("scraping", routing_key="scraping"),
    Queue("maintenance", routing_key="maintenance"),
)

app.conf.update(
    task_acks_late=_bool(os.getenv("CELERY_ACKS_LATE", "true"), True),
    worker_prefetch_multiplier=int(os.getenv("CELERY_PREFETCH_MULTIPLIER", "1")),
    result_expires=int(os.getenv("CELERY_RESULT_EXPIRES", "259200")),  # 3 days
    task_default_queue="scraping",
    task_routes={
        "marsvista.tasks.incremental_scrape_task": {"queue": "scraping"},
        "marsvista.tasks.scrape_range_task": {"queue": "scraping"},
        "marsvista.tasks.cleanup_stuck_jobs_task": {"queue": "maintenance"},
    },
)

# ============================================================================
# Celery Beat Schedule
# ============================================================================
beat_schedule = {
    "cleanup-stuck-scrape-jobs": {
        "task": "marsvista.tasks.cleanup_stuck_jobs_task",
        "schedule": crontab(minute=15),
        "options": {"queue": "maintenance"},
    },
}

if settings.incremental_scrape_enabled:
    beat_schedule["incremental-scrape"] = {
        "task": "marsvista.tasks.incremental_scrape_task",
        "schedule": _parse_cron(settings.incremental_scrape_cron),
        "options": {"queue": "scraping"},
    }

app.conf.beat_schedule = beat_schedule
app.conf.timezone = "UTC"
