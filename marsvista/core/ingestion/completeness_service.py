# ============================================================================
# MarsVista - Sol Completeness Tracking Service
# ============================================================================
"""
Persistent per-(source, sol) ingestion state.

Every scrape attempt for a sol ends in exactly one recorded outcome:

    record_success(source, sol, photo_count)
        status = success if photo_count > 0 else empty
        attempt_count += 1, consecutive_failures = 0, last_error cleared

    record_failure(source, sol, error)
        status = failed
        attempt_count += 1, consecutive_failures += 1, last_error stored

Status is not monotonic (failed -> success on retry is normal), but
consecutive_failures always equals the trailing run of failures ending at
last_attempt_at.

Usage:
    from marsvista.core.ingestion.completeness_service import completeness_service

    await completeness_service.record_success(session, "curiosity", 4102, photo_count=312)
    summary = await completeness_service.summarize(session, "curiosity")
    failed = await completeness_service.get_failed_sols(session, "curiosity")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marsvista.core.database.models import Photo, SolCompleteness, utcnow

logger = logging.getLogger("marsvista.ingestion.completeness")

VALID_STATUSES = {"pending", "success", "partial", "failed", "empty"}

# Longest last_error kept per sol
MAX_ERROR_LENGTH = 200


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


@dataclass
class CompletenessSummary:
    """Health rollup for one source."""

    source: str
    total_sols: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    total_photos: int = 0
    last_attempt_at: Optional[datetime] = None

    def count(self, status: str) -> int:
        return self.status_counts.get(status, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "total_sols": self.total_sols,
            "status_counts": dict(self.status_counts),
            "total_photos": self.total_photos,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
        }


class CompletenessService:
    """
    Service for recording and querying sol completeness.

    Provides methods to:
    - Record the outcome of each scrape attempt
    - Summarize ingestion health per source
    - List failed sols for retry
    - Reconcile records against stored photos after out-of-band repair
    """

    async def get_record(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
    ) -> Optional[SolCompleteness]:
        result = await session.execute(
            select(SolCompleteness).where(
                SolCompleteness.source == source,
                SolCompleteness.sol == sol,
            )
        )
        return result.scalar_one_or_none()

    async def _get_or_create(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
    ) -> SolCompleteness:
        record = await self.get_record(session, source, sol)
        if record is None:
            record = SolCompleteness(
                source=source,
                sol=sol,
                photo_count=0,
                status="pending",
                attempt_count=0,
                consecutive_failures=0,
            )
            session.add(record)
        return record

    async def count_stored_photos(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
    ) -> int:
        """Number of canonical photos stored for one (source, sol)."""
        result = await session.execute(
            select(func.count(Photo.id)).where(Photo.source == source, Photo.sol == sol)
        )
        return int(result.scalar() or 0)

    async def record_success(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
        photo_count: int,
        expected_count: Optional[int] = None,
    ) -> SolCompleteness:
        """
        Record a successful fetch of a sol.

        Args:
            session: Database session
            source: Source key
            sol: Sol number
            photo_count: Photos stored for the sol (0 means the sol is empty)
            expected_count: Upstream total when the source reports one

        Returns:
            Updated SolCompleteness record
        """
        now = utcnow()
        record = await self._get_or_create(session, source, sol)
        record.photo_count = photo_count
        if expected_count is not None:
            record.expected_count = expected_count
        record.status = "success" if photo_count > 0 else "empty"
        record.attempt_count = (record.attempt_count or 0) + 1
        record.consecutive_failures = 0
        record.last_error = None
        record.last_attempt_at = now
        record.last_success_at = now
        record.updated_at = now
        await session.flush()

        logger.debug(f"{source} sol {sol}: recorded {record.status} ({photo_count} photos)")
        return record

    async def record_failure(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
        error: str,
    ) -> SolCompleteness:
        """
        Record a failed attempt for a sol.

        Leaves photo_count and last_success_at untouched so earlier progress
        stays visible.
        """
        now = utcnow()
        record = await self._get_or_create(session, source, sol)
        record.status = "failed"
        record.attempt_count = (record.attempt_count or 0) + 1
        record.consecutive_failures = (record.consecutive_failures or 0) + 1
        record.last_error = truncate_error(error or "Unknown error")
        record.last_attempt_at = now
        record.updated_at = now
        await session.flush()

        logger.warning(
            f"{source} sol {sol}: recorded failure #{record.consecutive_failures}: {record.last_error}"
        )
        return record

    async def summarize(self, session: AsyncSession, source: str) -> CompletenessSummary:
        """
        Aggregate counts by status plus total photos and last attempt.

        Args:
            session: Database session
            source: Source key

        Returns:
            CompletenessSummary for the source
        """
        result = await session.execute(
            select(
                SolCompleteness.status,
                func.count(SolCompleteness.id),
                func.coalesce(func.sum(SolCompleteness.photo_count), 0),
                func.max(SolCompleteness.last_attempt_at),
            )
            .where(SolCompleteness.source == source)
            .group_by(SolCompleteness.status)
        )

        summary = CompletenessSummary(source=source)
        for status, count, photos, last_attempt in result.all():
            summary.status_counts[status] = int(count)
            summary.total_sols += int(count)
            summary.total_photos += int(photos or 0)
            if last_attempt and (summary.last_attempt_at is None or last_attempt > summary.last_attempt_at):
                summary.last_attempt_at = last_attempt
        return summary

    async def summarize_all(self, session: AsyncSession) -> Dict[str, CompletenessSummary]:
        """Summaries for every source that has completeness records."""
        result = await session.execute(select(SolCompleteness.source).distinct())
        sources = sorted(result.scalars().all())
        return {source: await self.summarize(session, source) for source in sources}

    async def get_failed_sols(
        self,
        session: AsyncSession,
        source: str,
        limit: int = 100,
    ) -> List[SolCompleteness]:
        """Failed sols, most recently attempted first."""
        return await self.list_by_status(session, source, "failed", limit=limit)

    async def list_by_status(
        self,
        session: AsyncSession,
        source: str,
        status: str,
        limit: int = 100,
    ) -> List[SolCompleteness]:
        """
        Records with a given status, most recently attempted first.

        Raises:
            ValueError: If status is not a known completeness status
        """
        if status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
            )
        result = await session.execute(
            select(SolCompleteness)
            .where(SolCompleteness.source == source, SolCompleteness.status == status)
            .order_by(SolCompleteness.last_attempt_at.desc(), SolCompleteness.sol.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def backfill(self, session: AsyncSession, source: str) -> int:
        """
        Reconcile completeness records with the photos actually stored.

        Sols with stored photos but no record get a ``success`` record. For
        existing records only photo_count is refreshed; the recorded status,
        attempt history and errors are left as they are.
        An ``empty`` record that turns out to have photos keeps its status and
        is reported with a warning.

        Returns:
            Number of records created or updated
        """
        result = await session.execute(
            select(Photo.sol, func.count(Photo.id))
            .where(Photo.source == source)
            .group_by(Photo.sol)
        )
        counts = {int(sol): int(count) for sol, count in result.all()}
        if not counts:
            return 0

        existing_result = await session.execute(
            select(SolCompleteness).where(SolCompleteness.source == source)
        )
        existing = {record.sol: record for record in existing_result.scalars().all()}

        now = utcnow()
        changed = 0
        for sol, count in counts.items():
            record = existing.get(sol)
            if record is None:
                session.add(SolCompleteness(
                    source=source,
                    sol=sol,
                    photo_count=count,
                    status="success",
                    attempt_count=1,
                    consecutive_failures=0,
                    last_success_at=now,
                ))
                changed += 1
            elif record.photo_count != count:
                if record.status == "empty":
                    logger.warning(
                        f"{source} sol {sol} is recorded empty but has {count} stored photos; "
                        f"re-scrape it to settle its status"
                    )
                record.photo_count = count
                record.updated_at = now
                changed += 1

        await session.flush()
        logger.info(f"Backfilled {changed} completeness records for {source}")
        return changed


# Global service instance
completeness_service = CompletenessService()
