"""
Schedule Builder - Turn a fully downloaded series into an hourly upload timetable.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from republisher.config import settings
from republisher.core.exceptions import PreconditionError
from republisher.database.models import UploadJob, UploadStatus
from republisher.repositories.series_repository import SeriesRepository
from republisher.repositories.upload_schedule_repository import UploadScheduleRepository

logger = logging.getLogger(__name__)

UPLOAD_SPACING = timedelta(hours=1)


def next_hour_boundary(now: datetime) -> datetime:
    """
    Truncate to the hour and move one hour ahead when the minute is past zero.

    Seconds are not considered: 10:00:30 stays at 10:00. The hour is added
    in UTC, so the result is the next real hour mark across a DST change.
    """
    boundary = now.replace(minute=0, second=0, microsecond=0)
    if now.minute > 0:
        boundary = (boundary.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(now.tzinfo)
    return boundary


class ScheduleBuilder:
    """Builds upload jobs for the downloaded episodes of a series."""

    def __init__(self, db: AsyncSession, timezone_name: Optional[str] = None):
        """
        Initialize builder with database session.

        Args:
            db: Database session
            timezone_name: IANA zone whose hour marks the slots align to
                (defaults to SCHEDULE_TIMEZONE)
        """
        self.db = db
        self.zone = ZoneInfo(timezone_name or settings.SCHEDULE_TIMEZONE)
        self.series_repo = SeriesRepository(db)
        self.schedule_repo = UploadScheduleRepository(db)

    async def schedule_series(self, series_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Schedule one upload per hour for every downloaded episode not yet scheduled.

        Args:
            series_id: Series database ID
            now: Reference time (defaults to current UTC time)

        Returns:
            Dict with series_id, series_title, episodes_scheduled,
            episodes_downloaded, first_upload_at and schedule_start_time

        Raises:
            PreconditionError: If the series is missing or not fully downloaded
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        series = await self.series_repo.get_by_id(series_id)
        if not series:
            raise PreconditionError("Series not found")

        episodes = await self.series_repo.get_downloaded_episodes(series_id)
        if not episodes:
            raise PreconditionError("No downloaded episodes found for this series")

        total = await self.series_repo.count_episodes(series_id)
        if len(episodes) < total:
            raise PreconditionError(
                f"Not all episodes downloaded ({len(episodes)}/{total}). "
                f"Please download all episodes first."
            )

        series_title = series.title
        # Hour marks follow the configured zone; slots are stored and spaced in UTC
        schedule_time = next_hour_boundary(now.astimezone(self.zone)).astimezone(timezone.utc)
        first_upload_at: Optional[datetime] = None
        scheduled = 0

        try:
            for episode in episodes:
                if await self.schedule_repo.exists_for_episode(episode.id):
                    continue

                self.db.add(UploadJob(
                    episode_id=episode.id,
                    series_id=series_id,
                    scheduled_at=schedule_time,
                    status=UploadStatus.PENDING,
                    upload_progress=0,
                    retry_count=0,
                ))
                await self.db.flush()

                if first_upload_at is None:
                    first_upload_at = schedule_time
                scheduled += 1
                schedule_time += UPLOAD_SPACING

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(f"Scheduling series {series_id} failed, no uploads were added")
            raise

        logger.info(f"Scheduled {scheduled} uploads for '{series_title}' starting {first_upload_at}")

        return {
            "series_id": series_id,
            "series_title": series_title,
            "episodes_scheduled": scheduled,
            "episodes_downloaded": len(episodes),
            "first_upload_at": first_upload_at.isoformat() if first_upload_at else None,
            "schedule_start_time": now.isoformat(),
        }
