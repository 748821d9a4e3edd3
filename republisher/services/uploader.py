"""
Episode Uploader - Publish one downloaded episode to the hosting platform.

This service provides:
- The scheduled publish of one upload job, with its retry policy
- Throttled progress writes and per-callback progress events
- Immediate publish of a single episode outside the timetable
"""
import logging
import os
import time
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from republisher.config import settings
from republisher.clients.hosting_client import HostingClient
from republisher.core.events import EventSink, EventType, NullSink, ProgressEvent
from republisher.core.exceptions import HostingClientError, PreconditionError, UploadAttemptError
from republisher.core.logging_config import transfer_logger
from republisher.database.models import Episode, Series, UploadJob, UploadStatus
from republisher.repositories.series_repository import SeriesRepository
from republisher.repositories.upload_schedule_repository import UploadScheduleRepository

logger = logging.getLogger(__name__)


def video_title(series: Series, episode: Episode) -> str:
    return f"{series.title} - Episode {episode.index_sequence}"


class EpisodeUploader:
    """
    Runs the reserve, stream and publish sequence for episodes.

    Args:
        session_factory: Factory for new AsyncSession objects
        hosting_client: Authenticated hosting platform client
        write_interval: Minimum seconds between progress writes of one upload
        max_attempts: Failed attempts after which a job is skipped
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hosting_client: HostingClient,
        write_interval: Optional[float] = None,
        max_attempts: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.hosting_client = hosting_client
        self.write_interval = settings.UPLOAD_PROGRESS_WRITE_INTERVAL if write_interval is None else write_interval
        self.max_attempts = max_attempts or settings.UPLOAD_MAX_ATTEMPTS

    async def upload(self, job: UploadJob, sink: Optional[EventSink] = None) -> str:
        """
        Publish the episode of a scheduled upload job.

        Args:
            job: Upload job with ``episode`` and ``series`` loaded
            sink: Receiver of progress events

        Returns:
            Remote video ID

        Raises:
            UploadAttemptError: The attempt failed; carries the recorded status and retry count
        """
        sink = sink or NullSink()
        episode, series = job.episode, job.series
        logger.info(f"Starting upload for Episode {episode.index_sequence}: {episode.title or ''}")

        async with self.session_factory() as db:
            repo = UploadScheduleRepository(db)
            last_write: Optional[float] = None

            async def on_progress(percent: int):
                nonlocal last_write
                now = time.monotonic()
                if last_write is None or now - last_write >= self.write_interval:
                    last_write = now
                    await repo.update_status(job.id, UploadStatus.UPLOADING, progress=percent, skip_start_time=True)

                await sink.emit(ProgressEvent(
                    type=EventType.UPLOAD_PROGRESS,
                    data={
                        "upload_id": job.id,
                        "episode_id": episode.id,
                        "series_id": series.id,
                        "series_title": series.title,
                        "episode_index": episode.index_sequence,
                        "progress": percent,
                    },
                ))

            try:
                if not episode.path or not os.path.exists(episode.path):
                    raise HostingClientError(f"Video file not found: {episode.path}")

                await repo.update_status(job.id, UploadStatus.UPLOADING, progress=0)

                started = time.monotonic()
                video_id = await self.hosting_client.upload_and_publish(
                    episode.path, video_title(series, episode), series.intro or "", on_progress
                )

                await repo.update_status(job.id, UploadStatus.COMPLETED, progress=100, remote_video_id=video_id)
                transfer_logger.log_transfer(
                    "upload", episode.id, os.path.getsize(episode.path),
                    time.monotonic() - started, episode.path
                )
                logger.info(f"Episode {episode.index_sequence} uploaded successfully: {video_id}")
                return video_id

            except Exception as e:
                error = str(e) or e.__class__.__name__
                logger.error(f"Episode {episode.index_sequence} upload failed: {error}")

                await db.rollback()
                retry_count = await repo.get_retry_count(job.id)

                if retry_count >= self.max_attempts - 1:
                    logger.warning(f"Max retries reached for Episode {episode.index_sequence}, skipping")
                    status = UploadStatus.SKIPPED
                    message = f"Max retries exceeded: {error}"
                else:
                    logger.info(
                        f"Will retry Episode {episode.index_sequence} "
                        f"(attempt {retry_count + 2}/{self.max_attempts})"
                    )
                    status = UploadStatus.FAILED
                    message = error

                await repo.update_status(job.id, status, error=message, increment_retry=True)
                raise UploadAttemptError(message, status.value, retry_count + 1) from e

    async def upload_episode_now(self, episode_id: int, sink: Optional[EventSink] = None) -> Dict[str, Any]:
        """
        Publish one episode immediately, leaving the upload schedule untouched.

        Args:
            episode_id: Episode database ID
            sink: Receiver of progress events

        Returns:
            Dict with video_id, url and episode summary

        Raises:
            PreconditionError: If the episode is missing or has no local file
            HostingClientError: If the hosting platform rejects the upload
        """
        sink = sink or NullSink()

        async with self.session_factory() as db:
            series_repo = SeriesRepository(db)
            episode = await series_repo.get_episode(episode_id)
            if not episode:
                raise PreconditionError("Episode not found")
            series = await series_repo.get_by_id(episode.series_id)

        if not episode.is_downloaded or not os.path.exists(episode.path):
            raise PreconditionError(f"Video file not found: {episode.path}")

        logger.info(f"Starting test upload for Episode {episode.index_sequence}")

        async def on_progress(percent: int):
            await sink.emit(ProgressEvent(
                type=EventType.UPLOAD_PROGRESS,
                data={
                    "episode_id": episode.id,
                    "series_id": series.id,
                    "series_title": series.title,
                    "episode_index": episode.index_sequence,
                    "progress": percent,
                },
            ))

        video_id = await self.hosting_client.upload_and_publish(
            episode.path, video_title(series, episode), series.intro or "", on_progress
        )

        return {
            "video_id": video_id,
            "url": settings.HOSTING_VIDEO_URL_TEMPLATE.format(video_id=video_id),
            "episode": {
                "id": episode.id,
                "index": episode.index_sequence,
                "title": episode.title,
                "series_title": series.title,
            },
        }
