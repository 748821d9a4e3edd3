"""
Download Queue Repository - Database operations for per-episode download jobs.
"""
from typing import List, Optional, Dict, Any, Sequence
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete

from republisher.database.models import DownloadJob, DownloadStatus, Episode, Series


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_download_job(job: DownloadJob, episode: Episode, series: Series) -> Dict[str, Any]:
    """Flatten a download job joined with its episode and series."""
    return {
        "id": job.id,
        "episode_id": job.episode_id,
        "series_id": job.series_id,
        "status": job.status.value,
        "progress": job.progress,
        "downloaded_bytes": job.downloaded_bytes,
        "total_bytes": job.total_bytes,
        "error_message": job.error_message,
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "created_at": _iso(job.created_at),
        "episode_title": episode.title,
        "index_sequence": episode.index_sequence,
        "external_id": episode.external_id,
        "series_title": series.title,
    }


class DownloadQueueRepository:
    """Repository for download queue database operations."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    def _joined(self):
        return (
            select(DownloadJob, Episode, Series)
            .join(Episode, DownloadJob.episode_id == Episode.id)
            .join(Series, DownloadJob.series_id == Series.id)
        )

    async def enqueue(self, series_id: int, episodes: Sequence[Episode]) -> int:
        """
        Add episodes to the download queue.

        Episodes that already have a queue row are left alone.

        Args:
            series_id: Series the episodes belong to
            episodes: Episodes to queue

        Returns:
            Number of rows inserted
        """
        inserted = 0
        try:
            for episode in episodes:
                existing = await self.db.execute(
                    select(DownloadJob.id).where(DownloadJob.episode_id == episode.id).limit(1)
                )
                if existing.scalar_one_or_none() is not None:
                    continue

                self.db.add(DownloadJob(
                    episode_id=episode.id,
                    series_id=series_id,
                    status=DownloadStatus.PENDING,
                    progress=0,
                    downloaded_bytes=0,
                    total_bytes=0,
                ))
                await self.db.flush()
                inserted += 1

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return inserted

    async def update_status(
        self,
        episode_id: int,
        status: DownloadStatus,
        progress: Optional[float] = None,
        total_bytes: Optional[int] = None,
        downloaded_bytes: Optional[int] = None,
        error: Optional[str] = None,
        skip_start_time: bool = False
    ) -> int:
        """
        Update the download job of an episode.

        Only the supplied fields are written. ``downloading`` stamps ``started_at``
        unless ``skip_start_time`` is set; terminal statuses stamp ``completed_at``.

        Returns:
            Number of rows updated
        """
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {"status": status, "updated_at": now}

        if progress is not None:
            values["progress"] = progress
        if total_bytes is not None:
            values["total_bytes"] = total_bytes
        if downloaded_bytes is not None:
            values["downloaded_bytes"] = downloaded_bytes
        if error:
            values["error_message"] = error

        if status == DownloadStatus.DOWNLOADING and not skip_start_time:
            values["started_at"] = now

        if status in (DownloadStatus.COMPLETED, DownloadStatus.FAILED):
            values["completed_at"] = now

        result = await self.db.execute(
            update(DownloadJob)
            .where(DownloadJob.episode_id == episode_id)
            .values(**values)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def queue_status(self, series_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Get download queue statistics and items.

        Args:
            series_id: Optional series filter

        Returns:
            Dict with per-status counts and the joined item list
        """
        query = self._joined()
        if series_id:
            query = query.where(DownloadJob.series_id == series_id)
        query = query.order_by(DownloadJob.created_at.asc(), DownloadJob.id.asc())

        result = await self.db.execute(query)
        items = [serialize_download_job(job, episode, series) for job, episode, series in result.all()]

        stats: Dict[str, Any] = {"total": len(items)}
        for status in DownloadStatus:
            stats[status.value] = sum(1 for item in items if item["status"] == status.value)
        stats["items"] = items
        return stats

    async def next_pending(self, limit: int = 1) -> List[Dict[str, Any]]:
        """
        Get the oldest pending download jobs.

        Args:
            limit: Maximum number of jobs

        Returns:
            List of joined job dicts
        """
        result = await self.db.execute(
            self._joined()
            .where(DownloadJob.status == DownloadStatus.PENDING)
            .order_by(DownloadJob.created_at.asc(), DownloadJob.id.asc())
            .limit(limit)
        )
        return [serialize_download_job(job, episode, series) for job, episode, series in result.all()]

    async def clear(self, series_id: Optional[int] = None) -> int:
        """
        Delete completed and failed jobs.

        Returns:
            Number of rows removed
        """
        query = delete(DownloadJob).where(
            DownloadJob.status.in_([DownloadStatus.COMPLETED, DownloadStatus.FAILED])
        )
        if series_id:
            query = query.where(DownloadJob.series_id == series_id)

        result = await self.db.execute(query)
        await self.db.commit()
        return result.rowcount or 0

    async def retry_failed(self, series_id: Optional[int] = None) -> int:
        """
        Reset failed jobs to pending and clear their error.

        Returns:
            Number of rows reset
        """
        query = (
            update(DownloadJob)
            .where(DownloadJob.status == DownloadStatus.FAILED)
            .values(
                status=DownloadStatus.PENDING,
                error_message=None,
                updated_at=datetime.now(timezone.utc)
            )
        )
        if series_id:
            query = query.where(DownloadJob.series_id == series_id)

        result = await self.db.execute(query)
        await self.db.commit()
        return result.rowcount or 0
