"""
Batch Downloader - Fetch every missing episode of a series to local storage.

This service provides:
- Queue bookkeeping for each episode (pending -> downloading -> completed/failed)
- Batches of bounded concurrency with a fixed delay between batches
- Streaming transfers to a ``.part`` file, renamed once complete
- Per-chunk progress events with throttled store writes
"""
import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from republisher.config import settings
from republisher.clients.catalog_client import CatalogClient
from republisher.core.events import EventSink, EventType, NullSink, ProgressEvent
from republisher.core.exceptions import CatalogClientError, PreconditionError
from republisher.core.logging_config import log_context, transfer_logger
from republisher.database.models import DownloadStatus, Episode
from republisher.repositories.download_queue_repository import DownloadQueueRepository
from republisher.repositories.series_repository import SeriesRepository

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(name: str) -> str:
    """Replace characters that are unsafe in file names, and whitespace runs, with '_'."""
    return _WHITESPACE.sub("_", _UNSAFE_CHARS.sub("_", name)).strip()


def episode_path(base_dir: str, series_title: Optional[str], index_sequence: int) -> Path:
    """Local destination of an episode: <base>/<series title>/episode_<index>.mp4"""
    folder = sanitize_filename(series_title or "unknown")
    return Path(base_dir) / folder / f"episode_{index_sequence}.mp4"


@dataclass
class _TransferProgress:
    """Byte counters of one transfer and the time of its last store write."""
    last_write: float
    downloaded_bytes: int = 0
    total_bytes: int = 0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return round(self.downloaded_bytes / self.total_bytes * 100, 2)


class BatchDownloader:
    """
    Downloads the episodes of a series in sequential batches.

    Each episode runs in its own database session, so items of one batch never
    share a session.

    Args:
        session_factory: Factory for new AsyncSession objects
        catalog_client: Client that resolves and streams episode bytes
        batch_delay: Seconds to wait between batches
        write_interval: Minimum seconds between progress writes of one transfer
        chunk_size: Read size of the byte stream
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog_client: CatalogClient,
        batch_delay: Optional[float] = None,
        write_interval: Optional[float] = None,
        chunk_size: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.catalog_client = catalog_client
        self.batch_delay = settings.DOWNLOAD_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.write_interval = settings.DOWNLOAD_PROGRESS_WRITE_INTERVAL if write_interval is None else write_interval
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_BYTES

    async def download_series(
        self,
        series_id: int,
        base_dir: Optional[str] = None,
        concurrency: Optional[int] = None,
        sink: Optional[EventSink] = None
    ) -> List[str]:
        """
        Download all episodes of a series that have no local file yet.

        Args:
            series_id: Series database ID
            base_dir: Root folder for media (defaults to DOWNLOAD_DIR)
            concurrency: Episodes downloaded at the same time per batch
            sink: Receiver of progress events

        Returns:
            Local paths of the episodes written in this run

        Raises:
            PreconditionError: If the series does not exist
        """
        base_dir = base_dir or settings.DOWNLOAD_DIR
        concurrency = max(1, concurrency or settings.DOWNLOAD_CONCURRENCY)
        sink = sink or NullSink()

        async with self.session_factory() as db:
            series_repo = SeriesRepository(db)
            series = await series_repo.get_by_id(series_id)
            if not series:
                raise PreconditionError("Series not found")

            series_title = series.title
            episodes = await series_repo.get_episodes_to_download(series_id)
            if not episodes:
                logger.info(f"No episodes to download for series {series_id}")
                return []

            await DownloadQueueRepository(db).enqueue(series_id, episodes)

        logger.info(f"Found {len(episodes)} episodes to download for '{series_title}'")
        await sink.emit(ProgressEvent(
            type=EventType.DOWNLOAD_START,
            data={"series_id": series_id, "series_title": series_title, "total": len(episodes)},
        ))

        downloaded: List[str] = []
        failed = 0

        for start in range(0, len(episodes), concurrency):
            batch = episodes[start:start + concurrency]
            results = await asyncio.gather(*[
                self._download_episode(series_id, series_title, episode, base_dir, sink)
                for episode in batch
            ], return_exceptions=True)

            # Failures are recorded per episode; an exception here means the store itself failed
            errors = [result for result in results if isinstance(result, BaseException)]
            if errors:
                logger.error(f"Download batch for series {series_id} aborted: {errors[0]}")
                raise errors[0]

            for path in results:
                if path:
                    downloaded.append(path)
                else:
                    failed += 1

            # Delay between batches, not between items
            if start + concurrency < len(episodes) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        if failed:
            logger.warning(f"{failed} episodes of series {series_id} failed to download")
        logger.info(f"Downloaded {len(downloaded)}/{len(episodes)} episodes of '{series_title}'")

        return downloaded

    async def _download_episode(
        self,
        series_id: int,
        series_title: str,
        episode: Episode,
        base_dir: str,
        sink: EventSink
    ) -> Optional[str]:
        """Download one episode. Failures are recorded and None is returned."""
        with log_context(series_id=series_id, episode_id=episode.id):
            return await self._run_episode(series_id, series_title, episode, base_dir, sink)

    async def _run_episode(
        self,
        series_id: int,
        series_title: str,
        episode: Episode,
        base_dir: str,
        sink: EventSink
    ) -> Optional[str]:
        async with self.session_factory() as db:
            queue = DownloadQueueRepository(db)
            series_repo = SeriesRepository(db)

            try:
                await queue.update_status(episode.id, DownloadStatus.DOWNLOADING, progress=0)
                logger.info(f"Downloading episode {episode.index_sequence}: {episode.title or episode.external_id}")

                url = await self.catalog_client.resolve_stream_url(episode.external_id)
                if not url:
                    raise CatalogClientError(f"No video URL found in response for {episode.external_id}")

                destination = episode_path(base_dir, series_title, episode.index_sequence)
                if destination.exists():
                    logger.info(f"File already exists: {destination}, skipping download")
                    size = destination.stat().st_size
                    progress = _TransferProgress(last_write=time.monotonic(), downloaded_bytes=size, total_bytes=size)
                else:
                    progress = await self._transfer(url, destination, series_id, episode, queue, sink)

                await series_repo.update_episode_path(episode.id, str(destination))
                await queue.update_status(
                    episode.id,
                    DownloadStatus.COMPLETED,
                    progress=100,
                    total_bytes=progress.total_bytes or progress.downloaded_bytes,
                    downloaded_bytes=progress.downloaded_bytes,
                )
                await sink.emit(ProgressEvent(
                    type=EventType.DOWNLOAD_COMPLETE,
                    data={
                        "series_id": series_id,
                        "episode_id": episode.id,
                        "index_sequence": episode.index_sequence,
                        "path": str(destination),
                    },
                ))
                return str(destination)

            except Exception as e:
                error = str(e) or e.__class__.__name__
                logger.error(f"Error downloading episode {episode.index_sequence}: {error}")

                await db.rollback()
                await queue.update_status(episode.id, DownloadStatus.FAILED, error=error)
                await sink.emit(ProgressEvent(
                    type=EventType.DOWNLOAD_ERROR,
                    data={
                        "series_id": series_id,
                        "episode_id": episode.id,
                        "index_sequence": episode.index_sequence,
                        "error": error,
                    },
                ))
                return None

    async def _transfer(
        self,
        url: str,
        destination: Path,
        series_id: int,
        episode: Episode,
        queue: DownloadQueueRepository,
        sink: EventSink
    ) -> _TransferProgress:
        """Stream bytes to ``<destination>.part`` and rename it on completion."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        part_path = destination.with_name(destination.name + ".part")
        started = time.monotonic()
        progress = _TransferProgress(last_write=started)

        try:
            async with self.catalog_client.stream(url) as response:
                progress.total_bytes = int(response.headers.get("content-length") or 0)

                with open(part_path, "wb") as fh:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        fh.write(chunk)
                        progress.downloaded_bytes += len(chunk)

                        await sink.emit(ProgressEvent(
                            type=EventType.DOWNLOAD_PROGRESS,
                            data={
                                "series_id": series_id,
                                "episode_id": episode.id,
                                "progress": progress.percent,
                                "downloaded_bytes": progress.downloaded_bytes,
                                "total_bytes": progress.total_bytes,
                            },
                        ))

                        now = time.monotonic()
                        if now - progress.last_write >= self.write_interval:
                            progress.last_write = now
                            await queue.update_status(
                                episode.id,
                                DownloadStatus.DOWNLOADING,
                                progress=progress.percent,
                                total_bytes=progress.total_bytes,
                                downloaded_bytes=progress.downloaded_bytes,
                                skip_start_time=True,
                            )

            os.replace(part_path, destination)
        finally:
            if part_path.exists():
                part_path.unlink()

        duration = time.monotonic() - started
        transfer_logger.log_transfer("download", episode.id, progress.downloaded_bytes, duration, str(destination))
        logger.info(f"Download completed: {destination}")

        return progress
