"""
Series Repository - Episode lookups and path bookkeeping for the catalog tables.
"""
from typing import List, Optional
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, and_

from republisher.database.models import Series, Episode


def _not_downloaded():
    return or_(Episode.path.is_(None), Episode.path == "")


def _downloaded():
    return and_(Episode.path.is_not(None), Episode.path != "")


class SeriesRepository:
    """Repository for series and episode database operations."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get_by_id(self, series_id: int) -> Optional[Series]:
        """Get series by ID."""
        result = await self.db.execute(select(Series).where(Series.id == series_id))
        return result.scalar_one_or_none()

    async def get_episode(self, episode_id: int) -> Optional[Episode]:
        """Get episode by ID."""
        result = await self.db.execute(select(Episode).where(Episode.id == episode_id))
        return result.scalar_one_or_none()

    async def get_episodes_to_download(self, series_id: int) -> List[Episode]:
        """
        Get episodes of a series that have no local file yet.

        Returns:
            Episodes ordered by index_sequence
        """
        result = await self.db.execute(
            select(Episode)
            .where(Episode.series_id == series_id)
            .where(_not_downloaded())
            .order_by(Episode.index_sequence.asc())
        )
        return list(result.scalars().all())

    async def get_downloaded_episodes(self, series_id: int) -> List[Episode]:
        """Get episodes of a series with a recorded local path, by index."""
        result = await self.db.execute(
            select(Episode)
            .where(Episode.series_id == series_id)
            .where(_downloaded())
            .order_by(Episode.index_sequence.asc())
        )
        return list(result.scalars().all())

    async def count_episodes(self, series_id: int) -> int:
        """Count all episodes of a series."""
        result = await self.db.execute(
            select(func.count(Episode.id)).where(Episode.series_id == series_id)
        )
        return result.scalar_one()

    async def update_episode_path(self, episode_id: int, path: str) -> int:
        """
        Record the local file path of a downloaded episode.

        Returns:
            Number of rows updated
        """
        result = await self.db.execute(
            update(Episode)
            .where(Episode.id == episode_id)
            .values(path=path, updated_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount or 0

    async def delete(self, series_id: int) -> bool:
        """
        Delete a series with its episodes, download jobs and upload jobs.

        Returns:
            True if deleted, False if not found
        """
        series = await self.db.get(Series, series_id)
        if not series:
            return False

        # Load the cascade chain so the ORM removes dependent rows too
        await self.db.refresh(series, ["episodes"])
        for episode in series.episodes:
            await self.db.refresh(episode, ["download_jobs", "upload_jobs"])

        await self.db.delete(series)
        await self.db.commit()
        return True
