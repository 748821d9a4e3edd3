"""
Upload Schedule Repository - Database operations for scheduled upload jobs.
"""
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from sqlalchemy.orm import joinedload

from republisher.database.models import UploadJob, UploadStatus, Episode, Series

RETRYABLE_STATUSES = (UploadStatus.PENDING, UploadStatus.FAILED)
TERMINAL_STATUSES = (UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.SKIPPED)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_upload_job(job: UploadJob, episode: Episode, series: Series) -> Dict[str, Any]:
    """Flatten an upload job joined with its episode and series."""
    return {
        "id": job.id,
        "episode_id": job.episode_id,
        "series_id": job.series_id,
        "scheduled_at": _iso(job.scheduled_at),
        "status": job.status.value,
        "upload_progress": job.upload_progress,
        "remote_video_id": job.remote_video_id,
        "error_message": job.error_message,
        "retry_count": job.retry_count,
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "episode_title": episode.title,
        "index_sequence": episode.index_sequence,
        "video_path": episode.path,
        "series_title": series.title,
    }


class UploadScheduleRepository:
    """Repository for upload schedule database operations."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get_by_id(self, job_id: int) -> Optional[UploadJob]:
        """Get upload job by ID."""
        result = await self.db.execute(select(UploadJob).where(UploadJob.id == job_id))
        return result.scalar_one_or_none()

    async def exists_for_episode(self, episode_id: int) -> bool:
        """Check whether an episode already has an upload job."""
        result = await self.db.execute(
            select(UploadJob.id).where(UploadJob.episode_id == episode_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_next_due(self, now: Optional[datetime] = None, max_attempts: int = 3) -> Optional[UploadJob]:
        """
        Get the oldest upload job that is due and still has attempts left.

        Args:
            now: Reference time (defaults to current UTC time)
            max_attempts: Jobs with this many failed attempts are never returned

        Returns:
            UploadJob with episode and series loaded, or None
        """
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(UploadJob)
            .options(joinedload(UploadJob.episode), joinedload(UploadJob.series))
            .where(UploadJob.status.in_(RETRYABLE_STATUSES))
            .where(UploadJob.scheduled_at <= now)
            .where(UploadJob.retry_count < max_attempts)
            .order_by(UploadJob.scheduled_at.asc(), UploadJob.id.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_retry_count(self, job_id: int) -> int:
        """Current failed-attempt count of a job (0 if missing)."""
        result = await self.db.execute(
            select(UploadJob.retry_count).where(UploadJob.id == job_id)
        )
        return result.scalar_one_or_none() or 0

    async def update_status(
        self,
        job_id: int,
        status: UploadStatus,
        progress: Optional[int] = None,
        remote_video_id: Optional[str] = None,
        error: Optional[str] = None,
        increment_retry: bool = False,
        skip_start_time: bool = False
    ) -> int:
        """
        Update an upload job.

        Only the supplied fields are written. ``uploading`` stamps ``started_at``
        unless ``skip_start_time`` is set; terminal statuses stamp ``completed_at``.

        Returns:
            Number of rows updated
        """
        now = datetime.now(timezone.utc)
        values: Dict[str, Any] = {"status": status, "updated_at": now}

        if progress is not None:
            values["upload_progress"] = progress
        if remote_video_id:
            values["remote_video_id"] = remote_video_id
        if error:
            values["error_message"] = error
        if increment_retry:
            values["retry_count"] = UploadJob.retry_count + 1

        if status == UploadStatus.UPLOADING and not skip_start_time:
            values["started_at"] = now

        if status in TERMINAL_STATUSES:
            values["completed_at"] = now

        result = await self.db.execute(
            update(UploadJob)
            .where(UploadJob.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def list_schedule(self, series_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Get the upload schedule with per-status counts, grouped by series.

        Args:
            series_id: Optional series filter

        Returns:
            Dict with counts, items ordered by scheduled time, and by_series groups
        """
        query = (
            select(UploadJob, Episode, Series)
            .join(Episode, UploadJob.episode_id == Episode.id)
            .join(Series, UploadJob.series_id == Series.id)
        )
        if series_id:
            query = query.where(UploadJob.series_id == series_id)
        query = query.order_by(UploadJob.scheduled_at.asc(), UploadJob.id.asc())

        result = await self.db.execute(query)
        items = [serialize_upload_job(job, episode, series) for job, episode, series in result.all()]

        stats: Dict[str, Any] = {"total": len(items)}
        for status in UploadStatus:
            stats[status.value] = sum(1 for item in items if item["status"] == status.value)
        stats["items"] = items

        by_series: Dict[int, Dict[str, Any]] = {}
        for item in items:
            group = by_series.setdefault(item["series_id"], {
                "series_id": item["series_id"],
                "series_title": item["series_title"],
                "episodes": [],
            })
            group["episodes"].append(item)
        stats["by_series"] = list(by_series.values())

        return stats

    async def remove_for_series(self, series_id: int) -> int:
        """
        Remove pending and failed jobs of a series. History rows are kept.

        Returns:
            Number of rows removed
        """
        result = await self.db.execute(
            delete(UploadJob)
            .where(UploadJob.series_id == series_id)
            .where(UploadJob.status.in_(RETRYABLE_STATUSES))
        )
        await self.db.commit()
        return result.rowcount or 0
