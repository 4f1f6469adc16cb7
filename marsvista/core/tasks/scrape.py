"""
Celery tasks for rover photo scraping.

Each task runs the async orchestrator inside asyncio.run(); the database
service uses NullPool in workers so connections never outlive a task's loop.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from celery import shared_task

from marsvista.core.ops.scrape_orchestrator import scrape_orchestrator

# ============================================================================
# SCRAPE TASKS
# ============================================================================


@shared_task(bind=True, name="marsvista.tasks.incremental_scrape_task", soft_time_limit=6 * 3600)
def incremental_scrape_task(self, sources: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Scheduled incremental scrape of every active source.

    Args:
        sources: Optional source keys; defaults to settings.active_sources

    Returns:
        Job summary dict
    """
    logger = logging.getLogger("marsvista.tasks.incremental_scrape")
    logger.info(f"Starting incremental scrape (sources={sources or 'configured'})")

    result = asyncio.run(scrape_orchestrator.run_incremental(sources=sources, trigger="scheduled"))

    logger.info(f"Incremental scrape {result['job_id']} finished: {result['status']}")
    return result


@shared_task(bind=True, name="marsvista.tasks.scrape_range_task", soft_time_limit=24 * 3600)
def scrape_range_task(
    self,
    source: str,
    start_sol: int,
    end_sol: int,
    delay_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Scrape a sol range of one source on a worker."""
    logger = logging.getLogger("marsvista.tasks.scrape_range")
    logger.info(f"Starting {source} range scrape {start_sol}-{end_sol}")
    return asyncio.run(
        scrape_orchestrator.run_range(source, start_sol, end_sol, delay_ms=delay_ms, trigger="scheduled")
    )


# ============================================================================
# MAINTENANCE TASKS
# ============================================================================


@shared_task(bind=True, name="marsvista.tasks.cleanup_stuck_jobs_task")
def cleanup_stuck_jobs_task(self, max_age_hours: Optional[float] = None) -> Dict[str, Any]:
    """Fail scrape jobs stuck in_progress (e.g. after a worker crash)."""
    logger = logging.getLogger("marsvista.tasks.cleanup_stuck_jobs")
    count = asyncio.run(scrape_orchestrator.cleanup_stuck_jobs(max_age_hours=max_age_hours))
    if count:
        logger.warning(f"Marked {count} stuck scrape jobs as failed")
    return {"marked_failed": count}
