"""
Downloads API - Series downloads and the download queue.

Endpoints:
- POST /downloads/series/{series_id} - Download all missing episodes of a series
- GET /downloads/queue - Queue statistics and items
- GET /downloads/queue/next - Oldest pending items
- POST /downloads/queue/clear - Remove completed and failed items
- POST /downloads/queue/retry - Reset failed items to pending
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
from pydantic import BaseModel, Field
import logging

from republisher.api.dependencies import get_broadcaster, get_downloader
from republisher.core.events import EventType, ProgressBroadcaster
from republisher.database.session import get_db
from republisher.repositories.download_queue_repository import DownloadQueueRepository
from republisher.services.batch_downloader import BatchDownloader
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["downloads"])


class DownloadSeriesRequest(BaseModel):
    """Options for a series download."""
    base_dir: Optional[str] = Field(None, description="Output folder (defaults to DOWNLOAD_DIR)")
    concurrency: Optional[int] = Field(None, ge=1, le=16, description="Episodes per batch")


class QueueActionRequest(BaseModel):
    """Optional series filter for queue maintenance."""
    series_id: Optional[int] = Field(None, description="Limit to one series")


@router.post("/series/{series_id}")
async def download_series(
    series_id: int,
    request: Optional[DownloadSeriesRequest] = None,
    downloader: BatchDownloader = Depends(get_downloader),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Download every episode of a series that has no local file yet."""
    options = request or DownloadSeriesRequest()
    try:
        paths = await downloader.download_series(
            series_id,
            base_dir=options.base_dir,
            concurrency=options.concurrency,
            sink=broadcaster
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return {
        "success": True,
        "series_id": series_id,
        "downloaded_count": len(paths),
        "paths": paths,
    }


@router.get("/queue")
async def get_queue(
    series_id: Optional[int] = Query(None, description="Filter by series"),
    db: AsyncSession = Depends(get_db)
):
    """Get download queue statistics and items."""
    repo = DownloadQueueRepository(db)
    return {"success": True, "queue": await repo.queue_status(series_id)}


@router.get("/queue/next")
async def get_next_pending(
    limit: int = Query(1, ge=1, le=100, description="Maximum number of items"),
    db: AsyncSession = Depends(get_db)
):
    """Get the oldest pending downloads."""
    repo = DownloadQueueRepository(db)
    return {"success": True, "items": await repo.next_pending(limit)}


@router.post("/queue/clear")
async def clear_queue(
    request: Optional[QueueActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Remove completed and failed downloads from the queue."""
    series_id = request.series_id if request else None
    cleared = await DownloadQueueRepository(db).clear(series_id)

    await broadcaster.emit_type(EventType.QUEUE_CLEARED, {"series_id": series_id, "count": cleared})
    return {
        "success": True,
        "count": cleared,
        "message": f"Cleared {cleared} items from queue",
    }


@router.post("/queue/retry")
async def retry_failed(
    request: Optional[QueueActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Reset failed downloads to pending."""
    series_id = request.series_id if request else None
    retried = await DownloadQueueRepository(db).retry_failed(series_id)

    await broadcaster.emit_type(EventType.QUEUE_RETRY, {"series_id": series_id, "count": retried})
    return {
        "success": True,
        "count": retried,
        "message": f"Reset {retried} failed downloads to pending",
    }
