"""
Celery tasks package for MarsVista.

Celery discovers tasks via the include= list in celery_app.py.
"""

from marsvista.core.tasks.scrape import (
    cleanup_stuck_jobs_task,
    incremental_scrape_task,
    scrape_range_task,
)

__all__ = [
    "cleanup_stuck_jobs_task",
    "incremental_scrape_task",
    "scrape_range_task",
]
