"""
Upload Scheduler - Background worker that publishes due episodes one at a time.

The scheduler wakes on a fixed interval, picks the oldest due upload job and
hands it to the ``EpisodeUploader``. At most one upload runs at any moment; a
tick that fires while an upload is in flight is skipped.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from republisher.config import settings
from republisher.core.events import EventSink, EventType, NullSink, ProgressEvent
from republisher.core.exceptions import UploadAttemptError
from republisher.core.logging_config import log_context
from republisher.repositories.upload_schedule_repository import UploadScheduleRepository
from republisher.services.uploader import EpisodeUploader

logger = logging.getLogger(__name__)


class UploadScheduler:
    """
    Timer-driven upload worker.

    Args:
        session_factory: Factory for new AsyncSession objects
        uploader: Publishes one upload job
        interval_seconds: Seconds between checks
        max_attempts: Jobs with this many failed attempts are never selected
        sink: Receiver of upload events (replaced by ``start``)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        uploader: EpisodeUploader,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sink: Optional[EventSink] = None
    ):
        self.session_factory = session_factory
        self.uploader = uploader
        self.interval_seconds = interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS
        self.max_attempts = max_attempts or settings.UPLOAD_MAX_ATTEMPTS
        self.current_upload: Optional[Dict[str, Any]] = None

        self._sink: EventSink = sink or NullSink()
        self._lock = asyncio.Lock()
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self, sink: Optional[EventSink] = None):
        """Start checking: once now, then every ``interval_seconds``. Needs a running loop."""
        if self.is_running:
            logger.info("Upload scheduler already running")
            return

        if sink is not None:
            self._sink = sink

        logger.info(f"Starting upload scheduler (interval={self.interval_seconds}s)")
        self._timer_task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        """Cancel the timer. An upload already in flight runs to completion."""
        if not self.is_running:
            logger.info("Upload scheduler not running")
            return

        self._timer_task.cancel()
        self._timer_task = None
        logger.info("Upload scheduler stopped")

    async def wait_idle(self):
        """Wait until spawned checks have finished."""
        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)

    async def _run(self):
        while True:
            task = asyncio.create_task(self.check_and_upload())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.interval_seconds)

    async def check_and_upload(self) -> Optional[str]:
        """
        Upload the oldest due job, unless an upload is already running.

        Errors are logged and never propagate, so the timer keeps running.

        Returns:
            Remote video ID on success, otherwise None
        """
        if self._lock.locked():
            logger.info("Upload in progress, skipping check")
            return None

        async with self._lock:
            try:
                async with self.session_factory() as db:
                    job = await UploadScheduleRepository(db).get_next_due(max_attempts=self.max_attempts)

                if not job:
                    return None

                episode, series = job.episode, job.series
                logger.info(
                    f"Found episode to upload: {series.title} - Episode {episode.index_sequence} "
                    f"(scheduled {job.scheduled_at})"
                )

                self.current_upload = {
                    "series_title": series.title,
                    "episode_index": episode.index_sequence,
                    "episode_id": episode.id,
                    "upload_id": job.id,
                }
                data = {
                    "upload_id": job.id,
                    "episode_id": episode.id,
                    "series_id": series.id,
                    "series_title": series.title,
                    "episode_index": episode.index_sequence,
                }

                try:
                    with log_context(series_id=series.id, episode_id=episode.id, upload_id=job.id):
                        video_id = await self.uploader.upload(job, self._sink)
                except UploadAttemptError as e:
                    await self._sink.emit(ProgressEvent(
                        type=EventType.UPLOAD_ERROR,
                        data={**data, "error": str(e), "status": e.status, "retry_count": e.retry_count},
                    ))
                    return None

                await self._sink.emit(ProgressEvent(
                    type=EventType.UPLOAD_COMPLETE,
                    data={**data, "video_id": video_id},
                ))
                return video_id

            except Exception:
                logger.exception("Error in upload check")
                return None
            finally:
                self.current_upload = None

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "current_upload": dict(self.current_upload) if self.current_upload else None,
        }
