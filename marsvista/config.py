# ============================================================================
# MarsVista - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for the MarsVista ingestion
core, including:
- Database and Redis connections
- Upstream NASA feed endpoints, page sizes and timeouts
- Scrape orchestration (delays, lookback window, retry passes)
- API rate-limit tiers

Environment Variables:
    Every field can be overridden by an environment variable of the same
    name (case-insensitive) or via a .env file. List and dict fields accept
    JSON, e.g. RATE_LIMIT_TIERS='{"free": [60, 500]}'.

Usage:
    from marsvista.config import settings
    timeout = settings.nasa_request_timeout
"""

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # =========================================================================
    # GENERAL
    # =========================================================================
    app_name: str = "MarsVista Ingest"
    debug: bool = Field(default=False, description="Enable SQL echo & verbose logging")
    log_level: str = Field(default="INFO", description="Root log level for CLI/worker entry points")

    # =========================================================================
    # DATABASE
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marsvista.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... or sqlite+aiosqlite://...)",
    )
    db_pool_size: int = Field(default=10, description="PostgreSQL pool size")
    db_max_overflow: int = Field(default=20, description="PostgreSQL pool overflow")
    db_pool_recycle: int = Field(default=3600, description="Recycle pooled connections after N seconds")

    # =========================================================================
    # REDIS / CELERY
    # =========================================================================
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis for rate-limit counters")
    redis_timeout_seconds: float = Field(default=2.0, description="Socket and connect timeout for rate-limit Redis calls")
    celery_broker_url: str = Field(default="redis://localhost:6379/0")
    celery_result_backend: str = Field(default="redis://localhost:6379/1")
    incremental_scrape_enabled: bool = Field(default=True, description="Schedule the daily incremental scrape")
    incremental_scrape_cron: str = Field(default="0 2 * * *", description="Cron for the incremental scrape (UTC)")

    # =========================================================================
    # UPSTREAM FEEDS
    # =========================================================================
    nasa_request_timeout: float = Field(default=30.0, description="Timeout (s) for upstream feed requests")
    curiosity_api_url: str = "https://mars.nasa.gov/api/v1/raw_image_items/"
    curiosity_per_page: int = 200
    perseverance_api_url: str = "https://mars.nasa.gov/rss/api/"
    perseverance_per_page: int = 100
    max_pages_per_sol: int = Field(default=100, description="Hard cap on pages fetched for one sol")
    page_retry_attempts: int = Field(default=3, description="Attempts per page on transient errors")
    page_retry_backoff_seconds: float = Field(default=1.0, description="Base backoff between page attempts")

    # =========================================================================
    # SCRAPE ORCHESTRATION
    # =========================================================================
    range_delay_ms: int = Field(default=500, description="Delay between sols for range scrapes")
    full_delay_ms: int = Field(default=200, description="Delay between sols for full scrapes")
    full_start_sol: int = Field(default=1, description="First sol for full scrapes")
    active_sources: List[str] = Field(
        default=["perseverance", "curiosity"],
        description="Sources covered by the incremental scrape",
    )
    lookback_sols: int = Field(default=7, description="Sols re-checked behind the current sol")
    current_sol_retries: int = Field(default=3, description="Attempts to read the current sol from upstream")
    retry_passes: int = Field(default=3, description="Extra passes over failed sols in incremental runs")
    retry_backoff_seconds: List[float] = Field(default=[30.0, 60.0, 120.0])
    stuck_job_hours: float = Field(default=1.0, description="Age after which in_progress jobs are failed")
    job_history_keep: int = Field(default=100, description="Finished jobs kept in the live tracker")

    # =========================================================================
    # RATE LIMITING
    # =========================================================================
    rate_limit_tiers: Dict[str, List[int]] = Field(
        default={
            "free": [1000, 10000],
            "pro": [10000, 100000],
            "unlimited": [-1, -1],
        },
        description="tier -> [hourly_limit, daily_limit]; -1 means unlimited",
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
