# marsvista/core/ingestion/current_sol_service.py
"""
Determines a source's current (newest) sol.

The upstream feed is asked for its single newest item first, with
exponential backoff between attempts. If upstream stays unavailable, the
newest stored sol + 1 is used instead. When neither signal exists the source
cannot start, and CurrentSolUnavailableError is raised.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select

from marsvista.config import settings
from marsvista.core.database.models import Photo
from marsvista.core.ingestion.sol_scraper import SolScraper, SourceFetchError, sol_scraper
from marsvista.core.ingestion.source_adapters import get_source_adapter
from marsvista.core.shared.database_service import DatabaseService, database_service

logger = logging.getLogger("marsvista.ingestion.current_sol")


class CurrentSolUnavailableError(Exception):
    """Neither upstream nor stored photos give a current sol for the source."""

    def __init__(self, source: str, reason: str):
        self.source = source
        super().__init__(f"Cannot determine current sol for {source}: {reason}")


class CurrentSolService:
    def __init__(
        self,
        scraper: Optional[SolScraper] = None,
        db: Optional[DatabaseService] = None,
        retries: Optional[int] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._scraper = scraper or sol_scraper
        self._db = db or database_service
        self.retries = max(1, retries or settings.current_sol_retries)
        self._sleep = sleep or asyncio.sleep

    async def fetch_upstream_sol(self, source: str) -> Optional[int]:
        """
        Ask the feed for its newest item and return that item's sol.

        Returns None after all attempts fail or when the feed returns nothing.
        """
        adapter = get_source_adapter(source)
        url, params = adapter.build_latest_request()

        for attempt in range(self.retries):
            try:
                payload = await self._scraper.fetch_json(source, None, url, params, retry_attempts=1)
            except SourceFetchError as e:
                if attempt + 1 < self.retries:
                    wait = 2 ** attempt
                    logger.warning(f"{e}; retrying current-sol lookup in {wait}s")
                    await self._sleep(wait)
                else:
                    logger.error(f"Current-sol lookup for {source} failed after {self.retries} attempts: {e}")
                continue

            sol = adapter.extract_latest_sol(payload) if payload else None
            if sol is not None:
                return sol
            logger.warning(f"{source}: newest-item response carried no sol")
            return None
        return None

    async def latest_stored_sol(self, source: str) -> Optional[int]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(func.max(Photo.sol)).where(Photo.source == source)
            )
            value = result.scalar()
        return int(value) if value is not None else None

    async def get_current_sol(self, source: str) -> int:
        """
        Current sol for ``source``.

        Raises:
            CurrentSolUnavailableError: No upstream answer and no stored photos
        """
        sol = await self.fetch_upstream_sol(source)
        if sol is not None:
            return sol

        stored = await self.latest_stored_sol(source)
        if stored is not None:
            logger.warning(f"{source}: using newest stored sol + 1 ({stored + 1}) as current sol")
            return stored + 1

        raise CurrentSolUnavailableError(source, "upstream unavailable and no stored photos")


# Global service instance
current_sol_service = CurrentSolService()
