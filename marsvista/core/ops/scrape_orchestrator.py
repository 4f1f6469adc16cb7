# ============================================================================
# MarsVista - Scrape Job Orchestrator
# ============================================================================
"""
Drives the sol scraper across sols and sources and records job outcomes.

Entry modes:
    - sol:         one sol of one source
    - range:       start_sol..end_sol of one source
    - full:        configured start sol through the source's current sol
                   (requires confirm=True)
    - incremental: the last N sols of every active source, with retry passes
                   over the sols that failed
    - retry:       sols whose completeness status is ``failed``

Sols of one source are processed strictly in order with a delay between
them. Each sol runs in its own session and its own try/except: a failed
sol is recorded as a completeness failure and the loop moves on. A
cancellation request is observed at the top of the next sol; work on the
current sol is never interrupted.

Outcome rules:
    - A source detail is ``success`` whenever its starting sol was
      determinable, however many of its sols failed. It is ``failed`` only
      when the source could not start at all.
    - A job is ``success`` if every source detail succeeded, ``partial`` if
      some did, ``failed`` if none did, and ``cancelled`` when cancellation
      was observed.

Usage:
    from marsvista.core.ops.scrape_orchestrator import scrape_orchestrator

    # Background (returns immediately)
    job_id = scrape_orchestrator.trigger_range("curiosity", 4000, 4010)
    status = await scrape_orchestrator.get_job_status(job_id)
    scrape_orchestrator.cancel_job(job_id)

    # Inline
    summary = await scrape_orchestrator.run_incremental(trigger="scheduled")
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update

from marsvista.config import settings
from marsvista.core.database.models import ScrapeJobRun, ScrapeJobSourceDetail, utcnow
from marsvista.core.ingestion.completeness_service import (
    CompletenessService,
    completeness_service,
    truncate_error,
)
from marsvista.core.ingestion.current_sol_service import (
    CurrentSolService,
    CurrentSolUnavailableError,
    current_sol_service,
)
from marsvista.core.ingestion.sol_scraper import (
    SolScrapeResult,
    SolScraper,
    classify_error,
    sol_scraper,
)
from marsvista.core.ingestion.source_adapters import get_source_adapter
from marsvista.core.ops.job_tracker import JobTracker, job_tracker
from marsvista.core.shared.database_service import DatabaseService, database_service

logger = logging.getLogger("marsvista.ops.scrape_orchestrator")

# Persisted job status -> live tracker status
TRACKER_STATUS = {
    "success": "completed",
    "partial": "partial",
    "failed": "failed",
    "cancelled": "cancelled",
}


@dataclass
class FailedSolInfo:
    """One sol that failed within a job."""

    sol: int
    error_type: str
    error_message: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sol": self.sol,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
        }


@dataclass
class SourceRunState:
    """Aggregated outcome of one source within a job."""

    source: str
    start_sol: Optional[int] = None
    end_sol: Optional[int] = None
    sols_attempted: int = 0
    sols_succeeded: int = 0
    photos_added: int = 0
    failed: Dict[int, FailedSolInfo] = field(default_factory=dict)
    status: str = "success"
    error_message: Optional[str] = None
    started: float = field(default_factory=time.monotonic)
    duration_seconds: float = 0.0

    @property
    def sols_failed(self) -> int:
        return len(self.failed)

    @property
    def failed_sols(self) -> List[Dict[str, Any]]:
        return [self.failed[sol].to_dict() for sol in sorted(self.failed)]

    def finish(self) -> None:
        self.duration_seconds = round(time.monotonic() - self.started, 3)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "start_sol": self.start_sol,
            "end_sol": self.end_sol,
            "sols_attempted": self.sols_attempted,
            "sols_succeeded": self.sols_succeeded,
            "sols_failed": self.sols_failed,
            "photos_added": self.photos_added,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
            "failed_sols": self.failed_sols,
        }


def compute_job_status(states: List[SourceRunState], cancelled: bool) -> str:
    if cancelled:
        return "cancelled"
    succeeded = sum(1 for s in states if s.status == "success")
    if states and succeeded == len(states):
        return "success"
    if succeeded > 0:
        return "partial"
    return "failed"


JobBody = Callable[[str], Awaitable[Tuple[List[SourceRunState], bool]]]


class ScrapeOrchestrator:
    """
    Runs scrape jobs and exposes their status and cancellation.

    Attributes:
        _tasks: Background tasks started by trigger_* keyed by job id
    """

    def __init__(
        self,
        scraper: Optional[SolScraper] = None,
        completeness: Optional[CompletenessService] = None,
        current_sols: Optional[CurrentSolService] = None,
        tracker: Optional[JobTracker] = None,
        db: Optional[DatabaseService] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._scraper = scraper or sol_scraper
        self._completeness = completeness or completeness_service
        self._current_sols = current_sols or current_sol_service
        self._tracker = tracker or job_tracker
        self._db = db or database_service
        self._sleep = sleep or asyncio.sleep
        self._tasks: Dict[str, asyncio.Task] = {}

    # =========================================================================
    # SINGLE SOL
    # =========================================================================

    async def ingest_sol(self, source: str, sol: int) -> SolScrapeResult:
        """
        Scrape one sol and record a completeness success.

        The recorded photo_count is the total stored for the sol, so
        re-ingesting a fully ingested sol keeps it ``success``.

        Raises:
            Exception: Anything the scrape raises; nothing is recorded and
                the session is rolled back
        """
        async with self._db.get_session() as session:
            result = await self._scraper.scrape_sol(session, source, sol)
            stored = await self._completeness.count_stored_photos(session, source, sol)
            await self._completeness.record_success(
                session, source, sol, stored, expected_count=result.expected_count
            )
        return result

    async def _record_sol_failure(self, source: str, sol: int, exc: BaseException) -> FailedSolInfo:
        message = truncate_error(str(exc) or type(exc).__name__)
        info = FailedSolInfo(
            sol=sol,
            error_type=classify_error(exc),
            error_message=message,
            timestamp=utcnow().isoformat(),
        )
        logger.error(f"{source} sol {sol} failed ({info.error_type}): {message}")
        try:
            async with self._db.get_session() as session:
                await self._completeness.record_failure(session, source, sol, message)
        except Exception as e:
            logger.error(f"Could not record failure for {source} sol {sol}: {e}")
        return info

    async def _scrape_sols(
        self,
        job_id: str,
        state: SourceRunState,
        sols: Iterable[int],
        delay_ms: int,
    ) -> bool:
        """
        Scrape ``sols`` in order into ``state``.

        Returns:
            True if cancellation was observed before all sols were processed
        """
        sols = list(sols)
        for index, sol in enumerate(sols):
            if self._tracker.is_cancel_requested(job_id):
                logger.info(f"Job {job_id}: cancellation observed before {state.source} sol {sol}")
                return True

            self._tracker.update_progress(job_id, current_sol=sol, source=state.source)
            inserted = 0
            try:
                result = await self.ingest_sol(state.source, sol)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                state.failed[sol] = await self._record_sol_failure(state.source, sol, e)
            else:
                inserted = result.inserted
                state.failed.pop(sol, None)
                state.sols_succeeded += 1
                state.photos_added += inserted
            state.sols_attempted += 1
            self._bump_progress(job_id, sol not in state.failed, inserted)

            if delay_ms > 0 and index < len(sols) - 1:
                await self._sleep(delay_ms / 1000)
        return False

    def _bump_progress(self, job_id: str, succeeded: bool, photos: int) -> None:
        job = self._tracker.get(job_id)
        if job is None:
            return
        self._tracker.update_progress(
            job_id,
            sols_processed=job.sols_processed + 1,
            sols_succeeded=job.sols_succeeded + (1 if succeeded else 0),
            sols_failed=job.sols_failed + (0 if succeeded else 1),
            photos_added=job.photos_added + photos,
        )

    # =========================================================================
    # JOB LIFECYCLE
    # =========================================================================

    def _ensure_job(
        self,
        job_id: Optional[str],
        job_type: str,
        source: Optional[str] = None,
        start_sol: Optional[int] = None,
        end_sol: Optional[int] = None,
    ) -> str:
        if job_id and self._tracker.get(job_id):
            return job_id
        return self._tracker.create_job(
            job_type, source=source, start_sol=start_sol, end_sol=end_sol, job_id=job_id
        ).job_id

    async def _create_job_run(self, job_id: str, job_type: str, trigger: str) -> None:
        async with self._db.get_session() as session:
            session.add(ScrapeJobRun(
                job_id=job_id,
                job_type=job_type,
                trigger=trigger,
                started_at=utcnow(),
                status="in_progress",
            ))

    async def _complete_job_run(
        self,
        job_id: str,
        states: List[SourceRunState],
        status: str,
        duration: float,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._db.get_session() as session:
            result = await session.execute(select(ScrapeJobRun).where(ScrapeJobRun.job_id == job_id))
            run = result.scalar_one()
            run.completed_at = utcnow()
            run.duration_seconds = duration
            run.status = status
            run.error_message = error_message
            run.total_sols_attempted = sum(s.sols_attempted for s in states)
            run.total_sols_succeeded = sum(s.sols_succeeded for s in states)
            run.total_sols_failed = sum(s.sols_failed for s in states)
            run.total_photos_added = sum(s.photos_added for s in states)
            for state in states:
                run.source_details.append(ScrapeJobSourceDetail(
                    source=state.source,
                    start_sol=state.start_sol,
                    end_sol=state.end_sol,
                    sols_attempted=state.sols_attempted,
                    sols_succeeded=state.sols_succeeded,
                    sols_failed=state.sols_failed,
                    photos_added=state.photos_added,
                    duration_seconds=state.duration_seconds,
                    status=state.status,
                    error_message=state.error_message,
                    failed_sols=state.failed_sols,
                ))

    async def _run_job(self, job_id: str, job_type: str, trigger: str, body: JobBody) -> Dict[str, Any]:
        """
        Persist the JobRun around ``body`` and settle the terminal status.

        Unexpected errors from ``body``, or from writing the JobRun row, fail
        the job instead of propagating.
        """
        started = time.monotonic()
        try:
            await self._create_job_run(job_id, job_type, trigger)
        except Exception as e:
            logger.error(f"Could not persist job {job_id}, failing it before any work: {e}")
            error_message = truncate_error(str(e) or type(e).__name__)
            self._tracker.complete_job(job_id, TRACKER_STATUS["failed"], error_message=error_message)
            self._tracker.cleanup_old_jobs(keep=settings.job_history_keep)
            return {
                "job_id": job_id,
                "job_type": job_type,
                "trigger": trigger,
                "status": "failed",
                "duration_seconds": round(time.monotonic() - started, 3),
                "error_message": error_message,
                "sources": [],
            }
        self._tracker.update_progress(job_id)

        states: List[SourceRunState] = []
        cancelled = False
        task_cancelled = False
        error_message: Optional[str] = None
        try:
            states, cancelled = await body(job_id)
        except asyncio.CancelledError:
            cancelled = task_cancelled = True
            error_message = "Job task was cancelled"
        except Exception as e:
            logger.exception(f"Job {job_id} crashed: {e}")
            error_message = truncate_error(str(e) or type(e).__name__)

        status = compute_job_status(states, cancelled)
        if status == "failed" and error_message is None:
            errors = [f"{s.source}: {s.error_message}" for s in states if s.error_message]
            error_message = "; ".join(errors) or None
        duration = round(time.monotonic() - started, 3)

        try:
            await self._complete_job_run(job_id, states, status, duration, error_message)
        except Exception as e:
            logger.error(f"Could not persist completion of job {job_id}: {e}")

        self._tracker.complete_job(job_id, TRACKER_STATUS[status], error_message=error_message)
        self._tracker.cleanup_old_jobs(keep=settings.job_history_keep)
        if task_cancelled:
            raise asyncio.CancelledError()

        logger.info(
            f"Job {job_id} ({job_type}) {status} in {duration:.1f}s: "
            f"{sum(s.sols_succeeded for s in states)} sols ok, "
            f"{sum(s.sols_failed for s in states)} failed, "
            f"{sum(s.photos_added for s in states)} photos added"
        )
        return {
            "job_id": job_id,
            "job_type": job_type,
            "trigger": trigger,
            "status": status,
            "duration_seconds": duration,
            "error_message": error_message,
            "sources": [s.to_dict() for s in states],
        }

    # =========================================================================
    # INLINE RUNS
    # =========================================================================

    async def run_range(
        self,
        source: str,
        start_sol: int,
        end_sol: int,
        delay_ms: Optional[int] = None,
        job_id: Optional[str] = None,
        job_type: str = "range",
        trigger: str = "manual",
    ) -> Dict[str, Any]:
        """
        Scrape ``start_sol..end_sol`` (inclusive) of one source.

        Raises:
            UnknownSourceError: Unknown source key
            ValueError: Invalid sol range
        """
        source = get_source_adapter(source).name
        _validate_range(start_sol, end_sol)
        delay = settings.range_delay_ms if delay_ms is None else delay_ms
        job_id = self._ensure_job(job_id, job_type, source, start_sol, end_sol)

        async def body(jid: str) -> Tuple[List[SourceRunState], bool]:
            state = SourceRunState(source=source, start_sol=start_sol, end_sol=end_sol)
            cancelled = await self._scrape_sols(jid, state, range(start_sol, end_sol + 1), delay)
            state.finish()
            return [state], cancelled

        return await self._run_job(job_id, job_type, trigger, body)

    async def run_sol(
        self,
        source: str,
        sol: int,
        job_id: Optional[str] = None,
        trigger: str = "manual",
    ) -> Dict[str, Any]:
        return await self.run_range(source, sol, sol, delay_ms=0, job_id=job_id, job_type="sol", trigger=trigger)

    async def run_full(
        self,
        source: str,
        confirm: bool = False,
        start_sol: Optional[int] = None,
        delay_ms: Optional[int] = None,
        job_id: Optional[str] = None,
        trigger: str = "manual",
    ) -> Dict[str, Any]:
        """
        Scrape from ``start_sol`` through the source's current sol.

        Raises:
            ValueError: If ``confirm`` is not True
        """
        _require_confirmation(confirm)
        source = get_source_adapter(source).name
        first = settings.full_start_sol if start_sol is None else start_sol
        _validate_range(first, first)
        delay = settings.full_delay_ms if delay_ms is None else delay_ms
        job_id = self._ensure_job(job_id, "full", source, first)

        async def body(jid: str) -> Tuple[List[SourceRunState], bool]:
            state = await self._start_state(jid, source, lambda current: first)
            if state.status == "failed":
                return [state], False
            cancelled = await self._scrape_sols(jid, state, range(state.start_sol, state.end_sol + 1), delay)
            state.finish()
            return [state], cancelled

        return await self._run_job(job_id, "full", trigger, body)

    async def run_incremental(
        self,
        sources: Optional[List[str]] = None,
        lookback_sols: Optional[int] = None,
        delay_ms: Optional[int] = None,
        job_id: Optional[str] = None,
        trigger: str = "scheduled",
    ) -> Dict[str, Any]:
        """
        Re-check the last ``lookback_sols`` sols of each source up to its
        current sol, then give failed sols up to ``settings.retry_passes``
        more attempts with increasing backoff.
        """
        source_keys = [get_source_adapter(s).name for s in (sources or settings.active_sources)]
        lookback = settings.lookback_sols if lookback_sols is None else lookback_sols
        delay = settings.range_delay_ms if delay_ms is None else delay_ms
        job_id = self._ensure_job(job_id, "incremental")

        async def body(jid: str) -> Tuple[List[SourceRunState], bool]:
            states: List[SourceRunState] = []
            for source in source_keys:
                if self._tracker.is_cancel_requested(jid):
                    return states, True
                state = await self._start_state(jid, source, lambda current: max(1, current - lookback))
                states.append(state)
                if state.status == "failed":
                    continue
                cancelled = await self._scrape_sols(jid, state, range(state.start_sol, state.end_sol + 1), delay)
                if not cancelled:
                    cancelled = await self._retry_failed_sols(jid, state, delay)
                state.finish()
                if cancelled:
                    return states, True
            return states, False

        return await self._run_job(job_id, "incremental", trigger, body)

    async def run_retry_failed(
        self,
        source: str,
        limit: int = 100,
        delay_ms: Optional[int] = None,
        job_id: Optional[str] = None,
        trigger: str = "manual",
    ) -> Dict[str, Any]:
        """Re-scrape up to ``limit`` sols whose completeness status is ``failed``."""
        source = get_source_adapter(source).name
        delay = settings.range_delay_ms if delay_ms is None else delay_ms
        job_id = self._ensure_job(job_id, "retry", source)

        async def body(jid: str) -> Tuple[List[SourceRunState], bool]:
            async with self._db.get_session() as session:
                records = await self._completeness.get_failed_sols(session, source, limit=limit)
            sols = sorted(r.sol for r in records)
            state = SourceRunState(
                source=source,
                start_sol=sols[0] if sols else None,
                end_sol=sols[-1] if sols else None,
            )
            self._tracker.add_sols_total(jid, len(sols))
            cancelled = await self._scrape_sols(jid, state, sols, delay)
            state.finish()
            return [state], cancelled

        return await self._run_job(job_id, "retry", trigger, body)

    async def _start_state(
        self,
        job_id: str,
        source: str,
        first_sol: Callable[[int], int],
    ) -> SourceRunState:
        """
        Resolve the source's current sol and build its run state.

        A source whose current sol cannot be determined gets a ``failed``
        state; that is the only way a source fails outright.
        """
        try:
            current = await self._current_sols.get_current_sol(source)
        except CurrentSolUnavailableError as e:
            logger.error(str(e))
            state = SourceRunState(source=source, status="failed", error_message=str(e))
            state.finish()
            return state

        start = first_sol(current)
        state = SourceRunState(source=source, start_sol=start, end_sol=current)
        self._tracker.add_sols_total(job_id, max(current - start + 1, 0))
        job = self._tracker.get(job_id)
        if job is not None and job.end_sol is None and job.source == source:
            self._tracker.update_progress(job_id, end_sol=current)
        logger.info(f"Job {job_id}: {source} sols {start}-{current}")
        return state

    async def _retry_failed_sols(self, job_id: str, state: SourceRunState, delay_ms: int = 0) -> bool:
        """
        Retry passes over ``state``'s failed sols, ``delay_ms`` apart.

        Returns:
            True if cancellation was observed
        """
        backoffs = settings.retry_backoff_seconds or [0.0]
        for attempt in range(settings.retry_passes):
            if not state.failed:
                break
            wait = backoffs[min(attempt, len(backoffs) - 1)]
            sols = sorted(state.failed)
            logger.info(
                f"Job {job_id}: retry pass {attempt + 1}/{settings.retry_passes} for "
                f"{len(sols)} {state.source} sols in {wait:.0f}s"
            )
            await self._sleep(wait)
            for index, sol in enumerate(sols):
                if self._tracker.is_cancel_requested(job_id):
                    return True
                try:
                    result = await self.ingest_sol(state.source, sol)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    state.failed[sol] = await self._record_sol_failure(state.source, sol, e)
                else:
                    del state.failed[sol]
                    state.sols_succeeded += 1
                    state.photos_added += result.inserted
                    logger.info(f"{state.source} sol {sol} succeeded on retry pass {attempt + 1}")
                if delay_ms > 0 and index < len(sols) - 1:
                    await self._sleep(delay_ms / 1000)
        return False

    # =========================================================================
    # BACKGROUND TRIGGERS
    # =========================================================================

    def _spawn(self, job_id: str, coro: Awaitable[Dict[str, Any]]) -> str:
        task = asyncio.create_task(coro, name=f"scrape-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))
        return job_id

    def trigger_sol(self, source: str, sol: int) -> str:
        """Start a single-sol job in the background and return its id."""
        source = get_source_adapter(source).name
        _validate_range(sol, sol)
        job_id = self._ensure_job(None, "sol", source, sol, sol)
        return self._spawn(job_id, self.run_sol(source, sol, job_id=job_id))

    def trigger_range(
        self,
        source: str,
        start_sol: int,
        end_sol: int,
        delay_ms: Optional[int] = None,
    ) -> str:
        """Start a range job in the background and return its id."""
        source = get_source_adapter(source).name
        _validate_range(start_sol, end_sol)
        job_id = self._ensure_job(None, "range", source, start_sol, end_sol)
        return self._spawn(job_id, self.run_range(source, start_sol, end_sol, delay_ms=delay_ms, job_id=job_id))

    def trigger_full(
        self,
        source: str,
        confirm: bool = False,
        start_sol: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ) -> str:
        """
        Start a full scrape in the background and return its id.

        Raises:
            ValueError: If ``confirm`` is not True
        """
        _require_confirmation(confirm)
        source = get_source_adapter(source).name
        first = settings.full_start_sol if start_sol is None else start_sol
        job_id = self._ensure_job(None, "full", source, first)
        return self._spawn(
            job_id,
            self.run_full(source, confirm=True, start_sol=first, delay_ms=delay_ms, job_id=job_id),
        )

    async def wait_for_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Await a background job started by this orchestrator, if still running."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    # =========================================================================
    # STATUS / CONTROL
    # =========================================================================

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Live status from the tracker, or the persisted JobRun when the job
        is no longer tracked in this process.
        """
        job = self._tracker.get(job_id)
        if job is not None:
            status = job.model_dump()
            status["persisted"] = False
            return status

        async with self._db.get_session() as session:
            result = await session.execute(select(ScrapeJobRun).where(ScrapeJobRun.job_id == job_id))
            run = result.scalar_one_or_none()
            if run is None:
                return None
            return {
                "job_id": run.job_id,
                "job_type": run.job_type,
                "trigger": run.trigger,
                "status": run.status,
                "started_at": run.started_at,
                "completed_at": run.completed_at,
                "duration_seconds": run.duration_seconds,
                "total_sols_attempted": run.total_sols_attempted,
                "total_sols_succeeded": run.total_sols_succeeded,
                "total_sols_failed": run.total_sols_failed,
                "total_photos_added": run.total_photos_added,
                "error_message": run.error_message,
                "sources": [
                    {
                        "source": d.source,
                        "status": d.status,
                        "start_sol": d.start_sol,
                        "end_sol": d.end_sol,
                        "sols_attempted": d.sols_attempted,
                        "sols_succeeded": d.sols_succeeded,
                        "sols_failed": d.sols_failed,
                        "photos_added": d.photos_added,
                        "error_message": d.error_message,
                        "failed_sols": d.failed_sols,
                    }
                    for d in run.source_details
                ],
                "persisted": True,
            }

    def cancel_job(self, job_id: str) -> bool:
        """Request cooperative cancellation; takes effect at the next sol."""
        return self._tracker.request_cancel(job_id)

    async def get_current_sol(self, source: str) -> int:
        return await self._current_sols.get_current_sol(get_source_adapter(source).name)

    async def cleanup_stuck_jobs(self, max_age_hours: Optional[float] = None) -> int:
        """
        Fail JobRuns left ``in_progress`` past ``max_age_hours`` (e.g. after a
        worker crash). Jobs still running in this process are left alone.

        Returns:
            Number of JobRuns marked failed
        """
        hours = settings.stuck_job_hours if max_age_hours is None else max_age_hours
        cutoff = utcnow() - timedelta(hours=hours)
        live_ids = [j.job_id for j in self._tracker.list_jobs(active_only=True)]

        stmt = (
            update(ScrapeJobRun)
            .where(ScrapeJobRun.status == "in_progress", ScrapeJobRun.started_at < cutoff)
            .values(
                status="failed",
                completed_at=utcnow(),
                error_message=f"Job did not complete within {hours:g}h; marked failed by cleanup",
            )
            .execution_options(synchronize_session=False)
        )
        if live_ids:
            stmt = stmt.where(ScrapeJobRun.job_id.not_in(live_ids))

        async with self._db.get_session() as session:
            result = await session.execute(stmt)
            count = result.rowcount or 0

        if count:
            logger.warning(f"Marked {count} stuck scrape jobs as failed")
        return count


def _validate_range(start_sol: int, end_sol: int) -> None:
    if start_sol < 0 or end_sol < 0:
        raise ValueError("Sols must be non-negative")
    if start_sol > end_sol:
        raise ValueError(f"start_sol ({start_sol}) must be <= end_sol ({end_sol})")


def _require_confirmation(confirm: bool) -> None:
    if confirm is not True:
        raise ValueError("Full scrape requires explicit confirmation (confirm=True)")


# Global orchestrator instance
scrape_orchestrator = ScrapeOrchestrator()
