# marsvista/core/database/models.py
"""
SQLAlchemy ORM models for MarsVista ingestion persistence.

Models:
    - Photo: Canonical, deduplicated rover photo record
    - SolCompleteness: Per-(source, sol) ingestion state machine
    - ScrapeJobRun: One orchestrated scrape invocation (manual or scheduled)
    - ScrapeJobSourceDetail: Per-source outcome within a scrape job

All timestamps are stored as naive UTC datetimes.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from .base import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class Photo(Base):
    """
    Canonical photo record produced by a source adapter.

    One row per upstream image. ``source_id`` is the upstream identifier and
    is unique across the store; re-ingesting an existing ``source_id`` is a
    no-op (inserts use ON CONFLICT DO NOTHING), never an update.

    Attributes:
        source_id: Upstream image identifier (stringified)
        source: Source key the photo was ingested from (curiosity, perseverance)
        sol: Mars solar day the image was taken on
        camera: Canonical camera identifier
        date_taken_utc: Capture time (UTC, required)
        date_taken_mars: Source-local solar time string (e.g. "Sol-01000M12:34:56")
        img_src_*: Image URLs by size; sources provide different subsets
        width/height: Pixel dimensions; nullable, sometimes inferred
        sample_type: Upstream sample type (Full, Subframe, Thumbnail, ...)
        raw_data: Untouched upstream payload, kept for reprocessing
    """

    __tablename__ = "photos"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    source_id = Column(String(128), nullable=False, unique=True)
    source = Column(String(50), nullable=False)
    sol = Column(Integer, nullable=False)
    camera = Column(String(64), nullable=False, index=True)

    # Capture time
    date_taken_utc = Column(DateTime, nullable=False)
    date_taken_mars = Column(String(64), nullable=True)

    # Image URLs
    img_src_small = Column(Text, nullable=True)
    img_src_medium = Column(Text, nullable=True)
    img_src_large = Column(Text, nullable=True)
    img_src_full = Column(Text, nullable=True)

    # Image properties
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    sample_type = Column(String(50), nullable=True)
    filter_name = Column(String(64), nullable=True)

    # Location
    site = Column(Integer, nullable=True)
    drive = Column(Integer, nullable=True)
    xyz = Column(String(255), nullable=True)

    # Camera pointing / telemetry
    mast_az = Column(Float, nullable=True)
    mast_el = Column(Float, nullable=True)
    camera_vector = Column(String(255), nullable=True)
    camera_position = Column(String(255), nullable=True)
    camera_model_type = Column(String(64), nullable=True)
    attitude = Column(String(255), nullable=True)
    spacecraft_clock = Column(Float, nullable=True)

    # Descriptive
    title = Column(Text, nullable=True)
    caption = Column(Text, nullable=True)
    credit = Column(Text, nullable=True)

    raw_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_photos_source_sol", "source", "sol"),
    )

    def __repr__(self) -> str:
        return f"<Photo(source_id={self.source_id}, source={self.source}, sol={self.sol}, camera={self.camera})>"


class SolCompleteness(Base):
    """
    Ingestion state for one (source, sol) pair.

    Created on the first scrape attempt for a sol and mutated on every later
    attempt. Rows are never deleted by the ingestion path.

    Status Values:
        - pending: Known but not attempted
        - success: Fetch succeeded and photo_count > 0
        - empty: Fetch succeeded and the sol has no stored photos
        - partial: Stored photos below the upstream expected count
        - failed: Last attempt failed (see last_error)

    Invariants:
        - consecutive_failures resets to 0 on any success
        - attempt_count increments on every recorded attempt
    """

    __tablename__ = "sol_completeness"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    source = Column(String(50), nullable=False)
    sol = Column(Integer, nullable=False)

    photo_count = Column(Integer, nullable=False, default=0)
    expected_count = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    last_attempt_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sol_completeness_source_sol", "source", "sol", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<SolCompleteness(source={self.source}, sol={self.sol}, status={self.status}, "
            f"photos={self.photo_count}, failures={self.consecutive_failures})>"
        )


class ScrapeJobRun(Base):
    """
    One orchestrated scrape invocation.

    Inserted with status ``in_progress`` when the job starts and completed
    exactly once (completion fields and terminal status). Never mutated
    afterwards.

    Job Types: sol, range, full, incremental, retry
    Triggers: manual, scheduled
    Terminal Status:
        - success: every source detail succeeded
        - partial: some source details succeeded
        - failed: no source detail succeeded
        - cancelled: cancellation observed at a sol boundary
    """

    __tablename__ = "scrape_job_runs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    job_id = Column(String(32), nullable=False, unique=True, index=True)
    job_type = Column(String(20), nullable=False)
    trigger = Column(String(20), nullable=False, default="manual")

    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    total_sols_attempted = Column(Integer, nullable=False, default=0)
    total_sols_succeeded = Column(Integer, nullable=False, default=0)
    total_sols_failed = Column(Integer, nullable=False, default=0)
    total_photos_added = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="in_progress", index=True)
    error_message = Column(Text, nullable=True)

    source_details = relationship(
        "ScrapeJobSourceDetail",
        back_populates="job_run",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ScrapeJobRun(job_id={self.job_id}, type={self.job_type}, status={self.status})>"


class ScrapeJobSourceDetail(Base):
    """
    Per-source outcome inside a ScrapeJobRun.

    ``status`` is ``success`` whenever the source could start (its starting
    sol was determinable), even if individual sols failed; those are listed
    in ``failed_sols`` as ``{sol, error_type, error_message, timestamp}``.
    """

    __tablename__ = "scrape_job_source_details"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    job_run_id = Column(
        UUID(), ForeignKey("scrape_job_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source = Column(String(50), nullable=False)

    start_sol = Column(Integer, nullable=True)
    end_sol = Column(Integer, nullable=True)
    sols_attempted = Column(Integer, nullable=False, default=0)
    sols_succeeded = Column(Integer, nullable=False, default=0)
    sols_failed = Column(Integer, nullable=False, default=0)
    photos_added = Column(Integer, nullable=False, default=0)
    duration_seconds = Column(Float, nullable=True)

    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    failed_sols = Column(JSON, nullable=False, default=list)

    job_run = relationship("ScrapeJobRun", back_populates="source_details")

    def __repr__(self) -> str:
        return (
            f"<ScrapeJobSourceDetail(source={self.source}, sols={self.start_sol}-{self.end_sol}, "
            f"status={self.status})>"
        )
