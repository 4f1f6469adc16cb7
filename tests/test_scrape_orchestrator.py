"""
Integration tests for ScrapeOrchestrator.

Jobs run end to end against the fake upstream feed and a SQLite store:
per-sol failure isolation, job and detail status rules, retry passes,
cooperative cancellation, background triggers, persisted status and
stuck-job cleanup.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import curiosity_item, no_sleep, perseverance_item
from marsvista.core.database.models import ScrapeJobRun, utcnow
from marsvista.core.ingestion.completeness_service import CompletenessService
from marsvista.core.ingestion.current_sol_service import CurrentSolService
from marsvista.core.ingestion.source_adapters import UnknownSourceError
from marsvista.core.ops.job_tracker import JobTracker
from marsvista.core.ops.scrape_orchestrator import (
    ScrapeOrchestrator,
    SourceRunState,
    compute_job_status,
)


async def _completeness(db, source, sol):
    async with db.get_session() as session:
        return await CompletenessService().get_record(session, source, sol)


async def _job_run(db, job_id):
    async with db.get_session() as session:
        result = await session.execute(select(ScrapeJobRun).where(ScrapeJobRun.job_id == job_id))
        return result.scalar_one()


def _build(db, scraper, tracker, sleep=no_sleep):
    return ScrapeOrchestrator(
        scraper=scraper,
        completeness=CompletenessService(),
        current_sols=CurrentSolService(scraper=scraper, db=db, sleep=no_sleep),
        tracker=tracker,
        db=db,
        sleep=sleep,
    )


# =============================================================================
# Status rules
# =============================================================================


class TestComputeJobStatus:
    """Test the job status rule over source details."""

    def test_all_success(self):
        assert compute_job_status([SourceRunState("a"), SourceRunState("b")], False) == "success"

    def test_some_failed(self):
        states = [SourceRunState("a"), SourceRunState("b", status="failed")]
        assert compute_job_status(states, False) == "partial"

    def test_all_failed(self):
        assert compute_job_status([SourceRunState("a", status="failed")], False) == "failed"
        assert compute_job_status([], False) == "failed"

    def test_cancelled_wins(self):
        assert compute_job_status([SourceRunState("a")], True) == "cancelled"


# =============================================================================
# Range / sol jobs
# =============================================================================


class TestRangeJobs:
    """Test range scrapes of one source."""

    @pytest.mark.asyncio
    async def test_range_success(self, db, orchestrator, feed):
        """Test a clean range: photos stored, completeness recorded, job persisted."""
        feed.curiosity(1, [curiosity_item(1, 1), curiosity_item(2, 1)])
        feed.curiosity(3, [curiosity_item(3, 3)])

        summary = await orchestrator.run_range("curiosity", 1, 3, delay_ms=0)

        assert summary["status"] == "success"
        detail = summary["sources"][0]
        assert detail["sols_attempted"] == 3
        assert detail["sols_succeeded"] == 3
        assert detail["photos_added"] == 3
        assert (await _completeness(db, "curiosity", 1)).status == "success"
        assert (await _completeness(db, "curiosity", 2)).status == "empty"

        run = await _job_run(db, summary["job_id"])
        assert run.status == "success"
        assert run.total_photos_added == 3
        assert run.completed_at is not None
        assert len(run.source_details) == 1

    @pytest.mark.asyncio
    async def test_failed_sol_does_not_stop_range(self, db, orchestrator, feed):
        """Test that a failing sol is recorded and later sols still run."""
        feed.curiosity(1, [curiosity_item(1, 1)])
        feed.set("curiosity", 2, 500)
        feed.curiosity(3, [curiosity_item(3, 3)])

        summary = await orchestrator.run_range("curiosity", 1, 3, delay_ms=0)

        detail = summary["sources"][0]
        assert summary["status"] == "success"
        assert detail["status"] == "success"
        assert detail["sols_attempted"] == 3
        assert detail["sols_succeeded"] == 2
        assert detail["sols_failed"] == 1
        assert detail["failed_sols"][0]["sol"] == 2
        assert detail["failed_sols"][0]["error_type"] == "HTTP_500"

        failed = await _completeness(db, "curiosity", 2)
        assert failed.status == "failed"
        assert failed.consecutive_failures == 1
        assert "HTTP_500" in failed.last_error
        assert (await _completeness(db, "curiosity", 3)).status == "success"

        run = await _job_run(db, summary["job_id"])
        assert run.total_sols_failed == 1
        assert run.source_details[0].failed_sols[0]["sol"] == 2

    @pytest.mark.asyncio
    async def test_reingest_keeps_success(self, db, orchestrator, feed):
        """Test that re-scraping a stored sol records the stored total."""
        feed.curiosity(5, [curiosity_item(1, 5), curiosity_item(2, 5)])

        await orchestrator.run_sol("curiosity", 5)
        summary = await orchestrator.run_sol("curiosity", 5)

        record = await _completeness(db, "curiosity", 5)
        assert summary["sources"][0]["photos_added"] == 0
        assert record.status == "success"
        assert record.photo_count == 2
        assert record.attempt_count == 2

    @pytest.mark.asyncio
    async def test_thumbnail_only_sol_is_empty(self, db, orchestrator, feed):
        feed.perseverance(9, [perseverance_item("T1", 9, sample_type="Thumbnail", extended={})])
        await orchestrator.run_sol("perseverance", 9)
        assert (await _completeness(db, "perseverance", 9)).status == "empty"

    @pytest.mark.asyncio
    async def test_delay_between_sols(self, db, scraper, tracker, feed):
        waits = []

        async def record_sleep(seconds):
            waits.append(seconds)

        orchestrator = _build(db, scraper, tracker, sleep=record_sleep)
        await orchestrator.run_range("curiosity", 1, 3, delay_ms=250)
        assert waits == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, orchestrator):
        with pytest.raises(UnknownSourceError):
            await orchestrator.run_range("spirit", 1, 2)
        with pytest.raises(ValueError):
            await orchestrator.run_range("curiosity", 5, 2)
        with pytest.raises(ValueError):
            await orchestrator.run_range("curiosity", -1, 2)

    @pytest.mark.asyncio
    async def test_tracker_progress(self, orchestrator, tracker, feed):
        feed.curiosity(1, [curiosity_item(1, 1)])
        summary = await orchestrator.run_range("curiosity", 1, 2, delay_ms=0)

        job = tracker.get(summary["job_id"])
        assert job.status == "completed"
        assert job.sols_processed == 2
        assert job.sols_succeeded == 2
        assert job.photos_added == 1
        assert job.percent_complete == 100.0


# =============================================================================
# Full / incremental / retry jobs
# =============================================================================


class TestFullJobs:
    """Test full scrapes up to the current sol."""

    @pytest.mark.asyncio
    async def test_confirmation_required(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.run_full("curiosity")
        with pytest.raises(ValueError):
            orchestrator.trigger_full("curiosity", confirm=False)

    @pytest.mark.asyncio
    async def test_full_runs_to_current_sol(self, orchestrator, feed):
        feed.latest["perseverance"] = {"images": [{"sol": 3}]}
        feed.perseverance(3, [perseverance_item("P3", 3)])

        summary = await orchestrator.run_full("perseverance", confirm=True, start_sol=1, delay_ms=0)

        detail = summary["sources"][0]
        assert summary["status"] == "success"
        assert (detail["start_sol"], detail["end_sol"]) == (1, 3)
        assert detail["sols_attempted"] == 3
        assert detail["photos_added"] == 1

    @pytest.mark.asyncio
    async def test_undeterminable_current_sol_fails_job(self, db, orchestrator, feed):
        """Test that a source that cannot start fails its detail and the job."""
        feed.latest["curiosity"] = 503

        summary = await orchestrator.run_full("curiosity", confirm=True, delay_ms=0)

        assert summary["status"] == "failed"
        assert summary["sources"][0]["status"] == "failed"
        assert "Cannot determine current sol" in summary["error_message"]
        run = await _job_run(db, summary["job_id"])
        assert run.status == "failed"
        assert run.source_details[0].status == "failed"


class TestIncrementalJobs:
    """Test incremental scrapes across sources."""

    @pytest.mark.asyncio
    async def test_partial_when_one_source_cannot_start(self, orchestrator, feed):
        feed.latest["perseverance"] = {"images": [{"sol": 10}]}
        feed.latest["curiosity"] = 503
        feed.perseverance(10, [perseverance_item("P10", 10)])

        summary = await orchestrator.run_incremental(
            sources=["perseverance", "curiosity"], lookback_sols=2, delay_ms=0
        )

        by_source = {d["source"]: d for d in summary["sources"]}
        assert summary["status"] == "partial"
        assert summary["trigger"] == "scheduled"
        assert by_source["perseverance"]["status"] == "success"
        assert (by_source["perseverance"]["start_sol"], by_source["perseverance"]["end_sol"]) == (8, 10)
        assert by_source["curiosity"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_retry_pass_recovers_sol(self, db, orchestrator, feed):
        """Test that a sol failing on the first pass succeeds on a retry pass."""
        feed.latest["curiosity"] = {"items": [{"sol": 4}]}
        feed.set("curiosity", 4, [500, 500, {"items": [curiosity_item(40, 4)], "total": 1}])

        summary = await orchestrator.run_incremental(sources=["curiosity"], lookback_sols=1, delay_ms=0)

        detail = summary["sources"][0]
        assert summary["status"] == "success"
        assert detail["sols_failed"] == 0
        assert detail["failed_sols"] == []
        assert detail["photos_added"] == 1
        record = await _completeness(db, "curiosity", 4)
        assert record.status == "success"
        assert record.attempt_count == 2

    @pytest.mark.asyncio
    async def test_retry_pass_waits_between_sols(self, db, scraper, tracker, feed):
        """Test that retried sols are spaced by the job delay after the pass backoff."""
        waits = []

        async def record_sleep(seconds):
            waits.append(seconds)

        feed.latest["curiosity"] = {"items": [{"sol": 4}]}
        feed.set("curiosity", 3, [500, 500, {"items": [curiosity_item(30, 3)], "total": 1}])
        feed.set("curiosity", 4, [500, 500, {"items": [curiosity_item(40, 4)], "total": 1}])
        orchestrator = _build(db, scraper, tracker, sleep=record_sleep)

        summary = await orchestrator.run_incremental(sources=["curiosity"], lookback_sols=1, delay_ms=250)

        assert summary["status"] == "success"
        assert summary["sources"][0]["photos_added"] == 2
        assert waits == [0.25, 30.0, 0.25]

    @pytest.mark.asyncio
    async def test_lookback_floor_is_sol_one(self, orchestrator, feed):
        feed.latest["curiosity"] = {"items": [{"sol": 2}]}
        summary = await orchestrator.run_incremental(sources=["curiosity"], lookback_sols=7, delay_ms=0)
        assert summary["sources"][0]["start_sol"] == 1


class TestRetryFailedJobs:
    """Test re-scraping sols marked failed."""

    @pytest.mark.asyncio
    async def test_retry_failed(self, db, orchestrator, feed):
        completeness = CompletenessService()
        async with db.get_session() as session:
            await completeness.record_failure(session, "curiosity", 7, "Timeout")
            await completeness.record_failure(session, "curiosity", 8, "Timeout")
        feed.curiosity(7, [curiosity_item(70, 7)])

        summary = await orchestrator.run_retry_failed("curiosity")

        detail = summary["sources"][0]
        assert detail["sols_attempted"] == 2
        assert (detail["start_sol"], detail["end_sol"]) == (7, 8)
        assert (await _completeness(db, "curiosity", 7)).status == "success"
        assert (await _completeness(db, "curiosity", 8)).status == "empty"

    @pytest.mark.asyncio
    async def test_crash_in_job_body_fails_job(self, db, orchestrator):
        """Test that an unexpected error fails the job instead of propagating."""
        orchestrator._completeness.get_failed_sols = AsyncMock(side_effect=RuntimeError("db down"))

        summary = await orchestrator.run_retry_failed("curiosity")

        assert summary["status"] == "failed"
        assert summary["error_message"] == "db down"
        assert (await _job_run(db, summary["job_id"])).status == "failed"

    @pytest.mark.asyncio
    async def test_job_run_insert_failure_fails_tracked_job(self, orchestrator, tracker, feed):
        """Test that a job whose JobRun row cannot be written does not stay active."""
        orchestrator._create_job_run = AsyncMock(side_effect=RuntimeError("db down"))

        summary = await orchestrator.run_range("curiosity", 1, 2, delay_ms=0)

        assert summary["status"] == "failed"
        assert summary["error_message"] == "db down"
        assert summary["sources"] == []
        job = tracker.get(summary["job_id"])
        assert job.status == "failed"
        assert not job.is_active
        assert feed.calls("curiosity") == 0


# =============================================================================
# Cancellation / background / status
# =============================================================================


class TestCancellation:
    """Test cooperative cancellation at sol boundaries."""

    @pytest.mark.asyncio
    async def test_cancel_observed_at_next_sol(self, db, scraper, feed):
        tracker = JobTracker()

        async def cancel_on_sleep(_seconds):
            for job in tracker.list_jobs(active_only=True):
                tracker.request_cancel(job.job_id)

        orchestrator = _build(db, scraper, tracker, sleep=cancel_on_sleep)
        feed.curiosity(1, [curiosity_item(1, 1)])
        feed.curiosity(2, [curiosity_item(2, 2)])

        summary = await orchestrator.run_range("curiosity", 1, 5, delay_ms=100)

        assert summary["status"] == "cancelled"
        assert summary["sources"][0]["sols_attempted"] == 1
        assert tracker.get(summary["job_id"]).status == "cancelled"
        assert (await _job_run(db, summary["job_id"])).status == "cancelled"
        assert await _completeness(db, "curiosity", 2) is None

    def test_cancel_unknown_job(self, orchestrator):
        assert orchestrator.cancel_job("missing") is False


class TestBackgroundJobs:
    """Test trigger_* and status lookup."""

    @pytest.mark.asyncio
    async def test_trigger_and_wait(self, orchestrator, feed):
        feed.curiosity(1, [curiosity_item(1, 1)])

        job_id = orchestrator.trigger_range("curiosity", 1, 2, delay_ms=0)
        status = await orchestrator.get_job_status(job_id)
        assert status["job_type"] == "range"
        assert status["persisted"] is False

        summary = await orchestrator.wait_for_job(job_id)
        assert summary["job_id"] == job_id
        assert summary["status"] == "success"

        status = await orchestrator.get_job_status(job_id)
        assert status["status"] == "completed"
        assert status["percent_complete"] == 100.0

    @pytest.mark.asyncio
    async def test_trigger_sol(self, orchestrator, feed):
        job_id = orchestrator.trigger_sol("perseverance", 12)
        summary = await orchestrator.wait_for_job(job_id)
        assert summary["job_type"] == "sol"

    @pytest.mark.asyncio
    async def test_persisted_status_after_restart(self, db, scraper, orchestrator, feed):
        """Test that a job unknown to the tracker is read from the database."""
        feed.set("curiosity", 2, 500)
        summary = await orchestrator.run_range("curiosity", 1, 2, delay_ms=0)

        restarted = _build(db, scraper, JobTracker())
        status = await restarted.get_job_status(summary["job_id"])

        assert status["persisted"] is True
        assert status["status"] == "success"
        assert status["total_sols_failed"] == 1
        assert status["sources"][0]["failed_sols"][0]["sol"] == 2
        assert await restarted.get_job_status("nope") is None

    @pytest.mark.asyncio
    async def test_get_current_sol(self, orchestrator, feed):
        feed.latest["curiosity"] = {"items": [{"sol": 4200}]}
        assert await orchestrator.get_current_sol("Curiosity") == 4200


class TestStuckJobCleanup:
    """Test failing JobRuns left in_progress."""

    @pytest.mark.asyncio
    async def test_cleanup(self, db, orchestrator, tracker):
        live = tracker.create_job("range", source="curiosity", start_sol=1, end_sol=2)
        old = utcnow() - timedelta(hours=3)
        async with db.get_session() as session:
            session.add(ScrapeJobRun(job_id="stuck1", job_type="range", started_at=old, status="in_progress"))
            session.add(ScrapeJobRun(job_id=live.job_id, job_type="range", started_at=old, status="in_progress"))
            session.add(ScrapeJobRun(job_id="recent1", job_type="range", started_at=utcnow(), status="in_progress"))
            session.add(ScrapeJobRun(job_id="done1", job_type="range", started_at=old, status="success"))

        count = await orchestrator.cleanup_stuck_jobs(max_age_hours=1)

        assert count == 1
        stuck = await _job_run(db, "stuck1")
        assert stuck.status == "failed"
        assert stuck.completed_at is not None
        assert "marked failed" in stuck.error_message
        assert (await _job_run(db, live.job_id)).status == "in_progress"
        assert (await _job_run(db, "recent1")).status == "in_progress"
        assert (await _job_run(db, "done1")).status == "success"
