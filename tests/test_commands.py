"""
Tests for the scrape command-line entry point and Celery wiring.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marsvista.celery_app import _parse_cron, app
from marsvista.core.commands.scrape import build_parser, main
from marsvista.core.tasks import scrape as scrape_tasks


class TestParser:
    """Test argument parsing."""

    def test_range(self):
        args = build_parser().parse_args(["range", "curiosity", "10", "20", "--delay-ms", "0"])
        assert (args.command, args.source, args.start_sol, args.end_sol, args.delay_ms) == (
            "range", "curiosity", 10, 20, 0
        )

    def test_incremental_repeatable_source(self):
        args = build_parser().parse_args(["incremental", "--source", "curiosity", "--source", "perseverance"])
        assert args.source == ["curiosity", "perseverance"]
        assert args.lookback is None

    def test_full_confirm_flag(self):
        assert build_parser().parse_args(["full", "curiosity"]).confirm is False
        assert build_parser().parse_args(["full", "curiosity", "--confirm"]).confirm is True

    def test_unknown_source_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sol", "spirit", "1"])


class TestMain:
    """Test exit codes of main()."""

    def test_full_without_confirm(self):
        """Test that an unconfirmed full scrape exits with a usage error."""
        assert main(["full", "curiosity"]) == 2

    def test_init_db(self):
        assert main(["init-db"]) == 0

    def test_job_status_drives_exit_code(self):
        fake = MagicMock()
        fake.run_sol = AsyncMock(return_value={"status": "failed"})
        with patch("marsvista.core.commands.scrape.scrape_orchestrator", fake):
            assert main(["sol", "curiosity", "5"]) == 1
        fake.run_sol.assert_awaited_once_with("curiosity", 5)


class TestCelery:
    """Test schedule parsing and task wrappers."""

    def test_parse_cron(self):
        schedule = _parse_cron("30 4 * * *")
        assert schedule.hour == {4}
        assert schedule.minute == {30}

    def test_parse_cron_invalid_falls_back(self):
        schedule = _parse_cron("every day")
        assert schedule.hour == {2}
        assert schedule.minute == {0}

    def test_beat_schedule(self):
        assert "cleanup-stuck-scrape-jobs" in app.conf.beat_schedule
        assert "incremental-scrape" in app.conf.beat_schedule

    def test_incremental_task_runs_orchestrator(self):
        fake = MagicMock()
        fake.run_incremental = AsyncMock(return_value={"job_id": "abc", "status": "success"})
        with patch.object(scrape_tasks, "scrape_orchestrator", fake):
            result = scrape_tasks.incremental_scrape_task(sources=["curiosity"])
        assert result["status"] == "success"
        fake.run_incremental.assert_awaited_once_with(sources=["curiosity"], trigger="scheduled")

    def test_cleanup_task(self):
        fake = MagicMock()
        fake.cleanup_stuck_jobs = AsyncMock(return_value=2)
        with patch.object(scrape_tasks, "scrape_orchestrator", fake):
            assert scrape_tasks.cleanup_stuck_jobs_task() == {"marked_failed": 2}
