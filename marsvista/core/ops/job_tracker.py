# ============================================================================
# MarsVista - Live Scrape Job Tracker
# ============================================================================
"""
In-process registry of running and recently finished scrape jobs.

The persisted ScrapeJobRun row is the durable record; this tracker holds the
live view (current sol, percent, ETA) and the cooperative cancel flag that
the orchestrator checks at every sol boundary.

Status Values:
    started -> in_progress -> completed | partial | failed | cancelled

Usage:
    from marsvista.core.ops.job_tracker import job_tracker

    job = job_tracker.create_job("range", source="curiosity", start_sol=1, end_sol=10)
    job_tracker.update_progress(job.job_id, current_sol=3, sols_processed=2)
    job_tracker.request_cancel(job.job_id)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

logger = logging.getLogger("marsvista.ops.job_tracker")

ACTIVE_STATUSES = {"started", "in_progress"}
TERMINAL_STATUSES = {"completed", "partial", "failed", "cancelled"}


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobProgress(BaseModel):
    """Live progress snapshot of one scrape job."""

    job_id: str
    job_type: str
    source: Optional[str] = None
    status: str = "started"
    start_sol: Optional[int] = None
    end_sol: Optional[int] = None
    current_sol: Optional[int] = None
    sols_total: int = 0
    sols_processed: int = 0
    sols_succeeded: int = 0
    sols_failed: int = 0
    photos_added: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    cancel_requested: bool = False
    error_message: Optional[str] = None

    @computed_field
    @property
    def percent_complete(self) -> float:
        if self.sols_total <= 0:
            return 100.0 if self.status in TERMINAL_STATUSES else 0.0
        return round(min(self.sols_processed / self.sols_total, 1.0) * 100, 1)

    @computed_field
    @property
    def eta_seconds(self) -> Optional[float]:
        if self.status in TERMINAL_STATUSES or self.sols_processed <= 0 or self.sols_total <= 0:
            return None
        elapsed = (_utcnow() - self.started_at).total_seconds()
        remaining = max(self.sols_total - self.sols_processed, 0)
        return round(elapsed / self.sols_processed * remaining, 1)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class JobTracker:
    """
    Registry of live job progress keyed by job id.

    All mutation happens on the event loop that runs the jobs, so plain
    dict operations are sufficient.
    """

    def __init__(self):
        self._jobs: Dict[str, JobProgress] = {}

    def create_job(
        self,
        job_type: str,
        source: Optional[str] = None,
        start_sol: Optional[int] = None,
        end_sol: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> JobProgress:
        sols_total = (end_sol - start_sol + 1) if start_sol is not None and end_sol is not None else 0
        job = JobProgress(
            job_id=job_id or new_job_id(),
            job_type=job_type,
            source=source,
            start_sol=start_sol,
            end_sol=end_sol,
            sols_total=max(sols_total, 0),
        )
        self._jobs[job.job_id] = job
        logger.info(f"Job {job.job_id} created ({job_type}, source={source}, sols={start_sol}-{end_sol})")
        return job

    def get(self, job_id: str) -> Optional[JobProgress]:
        return self._jobs.get(job_id)

    def update_progress(self, job_id: str, **changes) -> Optional[JobProgress]:
        """
        Apply field changes to a job; moves ``started`` jobs to ``in_progress``.

        Unknown job ids are ignored and return None.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None
        for key, value in changes.items():
            setattr(job, key, value)
        if job.status == "started":
            job.status = "in_progress"
        return job

    def add_sols_total(self, job_id: str, count: int) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.sols_total += max(count, 0)

    def complete_job(
        self,
        job_id: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> Optional[JobProgress]:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid terminal status '{status}'")
        job = self._jobs.get(job_id)
        if job is None:
            return None
        job.status = status
        job.completed_at = _utcnow()
        if error_message:
            job.error_message = error_message
        logger.info(f"Job {job_id} finished with status {status}")
        return job

    def request_cancel(self, job_id: str) -> bool:
        """
        Flag an active job for cancellation.

        Returns:
            True if the flag was set, False if the job is unknown or finished
        """
        job = self._jobs.get(job_id)
        if job is None or not job.is_active:
            return False
        job.cancel_requested = True
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def is_cancel_requested(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return bool(job and job.cancel_requested)

    def list_jobs(self, active_only: bool = False) -> List[JobProgress]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.started_at, reverse=True)
        if active_only:
            jobs = [j for j in jobs if j.is_active]
        return jobs

    def cleanup_old_jobs(self, keep: int = 100) -> int:
        """Drop the oldest finished jobs beyond ``keep``; active jobs are never dropped."""
        finished = sorted(
            (j for j in self._jobs.values() if not j.is_active),
            key=lambda j: j.completed_at or j.started_at,
            reverse=True,
        )
        stale = finished[keep:]
        for job in stale:
            del self._jobs[job.job_id]
        return len(stale)


# Global tracker instance
job_tracker = JobTracker()
