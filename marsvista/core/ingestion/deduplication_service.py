# ============================================================================
# MarsVista - Photo Deduplication Service
# ============================================================================
"""
Decides which candidate photos are new and writes them idempotently.

Two layers guard against duplicates:

1. ``find_new_source_ids`` does one batched existence check per chunk of
   ids, so a sol with hundreds of images costs a handful of queries rather
   than one round-trip per image.
2. ``insert_photos`` writes with ``INSERT ... ON CONFLICT (source_id) DO
   NOTHING``. The pre-check is only an optimisation; the unique constraint
   is what keeps two overlapping scrape jobs from inserting the same
   ``source_id`` twice.

Usage:
    from marsvista.core.ingestion.deduplication_service import deduplication_service

    new_ids = await deduplication_service.find_new_source_ids(session, ids)
    inserted = await deduplication_service.insert_photos(session, photos)
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marsvista.core.database.models import Photo
from marsvista.core.ingestion.source_adapters import CanonicalPhoto
from marsvista.core.shared.database_service import DatabaseService, database_service

logger = logging.getLogger("marsvista.ingestion.deduplication")

# Ids per IN (...) lookup
LOOKUP_CHUNK_SIZE = 500


class DeduplicationService:
    """
    Batched existence checks and conflict-free inserts for canonical photos.
    """

    def __init__(self, db: Optional[DatabaseService] = None):
        self._db = db or database_service

    async def find_new_source_ids(
        self,
        session: AsyncSession,
        source_ids: Iterable[str],
    ) -> Set[str]:
        """
        Return the subset of ``source_ids`` not already stored.

        Args:
            session: Database session
            source_ids: Candidate upstream ids (duplicates allowed)

        Returns:
            Set of ids with no existing Photo row
        """
        candidates = list(dict.fromkeys(source_ids))
        if not candidates:
            return set()

        existing: Set[str] = set()
        for i in range(0, len(candidates), LOOKUP_CHUNK_SIZE):
            chunk = candidates[i:i + LOOKUP_CHUNK_SIZE]
            result = await session.execute(
                select(Photo.source_id).where(Photo.source_id.in_(chunk))
            )
            existing.update(result.scalars().all())

        return set(candidates) - existing

    async def insert_photos(
        self,
        session: AsyncSession,
        photos: Sequence[CanonicalPhoto],
    ) -> int:
        """
        Insert photos, ignoring any whose ``source_id`` already exists.

        Duplicate ids within ``photos`` keep the first occurrence.

        Returns:
            Number of rows actually inserted
        """
        rows: Dict[str, dict] = {}
        for photo in photos:
            rows.setdefault(photo.source_id, photo.to_row())
        if not rows:
            return 0

        return await self._db.insert_ignore_duplicates(
            session, Photo, list(rows.values()), index_elements=["source_id"]
        )

    async def store_new_photos(
        self,
        session: AsyncSession,
        photos: Sequence[CanonicalPhoto],
    ) -> Dict[str, int]:
        """
        Filter ``photos`` against the store and insert the survivors.

        Returns:
            Dict with ``inserted`` and ``duplicates`` counts. Rows that pass
            the pre-check but lose a race to a concurrent writer are counted
            as duplicates.
        """
        if not photos:
            return {"inserted": 0, "duplicates": 0}

        new_ids = await self.find_new_source_ids(session, (p.source_id for p in photos))
        survivors: List[CanonicalPhoto] = [p for p in photos if p.source_id in new_ids]
        inserted = await self.insert_photos(session, survivors)

        duplicates = len(photos) - inserted
        if duplicates:
            logger.debug(f"Skipped {duplicates} already-stored photos")
        return {"inserted": inserted, "duplicates": duplicates}


# Global service instance
deduplication_service = DeduplicationService()
