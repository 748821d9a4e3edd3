"""
Uploads API - Upload schedule, scheduler status and hosting platform checks.

Endpoints:
- POST /uploads/schedule/{series_id} - Schedule a downloaded series, one episode per hour
- GET /uploads/schedule - Schedule items with counts, grouped by series
- DELETE /uploads/schedule/{series_id} - Remove pending and failed items of a series
- GET /uploads/scheduler/status - Scheduler state and current upload
- GET /uploads/connection - Verify hosting credentials
- POST /uploads/test/{episode_id} - Publish one episode immediately
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
import logging

from republisher.api.dependencies import get_broadcaster, get_hosting_client, get_scheduler, get_uploader
from republisher.clients.hosting_client import HostingClient
from republisher.core.events import EventType, ProgressBroadcaster
from republisher.core.exceptions import HostingClientError
from republisher.database.session import get_db
from republisher.repositories.upload_schedule_repository import UploadScheduleRepository
from republisher.services.schedule_builder import ScheduleBuilder
from republisher.services.upload_scheduler import UploadScheduler
from republisher.services.uploader import EpisodeUploader
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])


@router.post("/schedule/{series_id}")
async def schedule_series(
    series_id: int,
    db: AsyncSession = Depends(get_db),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Add a fully downloaded series to the upload schedule."""
    try:
        result = await ScheduleBuilder(db).schedule_series(series_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    await broadcaster.emit_type(EventType.UPLOAD_SCHEDULED, result)
    return {
        "success": True,
        "message": f"Scheduled {result['episodes_scheduled']} episodes for upload",
        **result,
    }


@router.get("/schedule")
async def get_schedule(
    series_id: Optional[int] = Query(None, description="Filter by series"),
    db: AsyncSession = Depends(get_db)
):
    """Get the upload schedule with per-status counts."""
    repo = UploadScheduleRepository(db)
    return {"success": True, "schedule": await repo.list_schedule(series_id)}


@router.delete("/schedule/{series_id}")
async def remove_schedule(
    series_id: int,
    db: AsyncSession = Depends(get_db),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Remove pending and failed uploads of a series. Finished uploads are kept."""
    removed = await UploadScheduleRepository(db).remove_for_series(series_id)

    await broadcaster.emit_type(EventType.UPLOAD_SCHEDULE_REMOVED, {"series_id": series_id, "count": removed})
    return {
        "success": True,
        "count": removed,
        "message": f"Removed {removed} scheduled uploads",
    }


@router.get("/scheduler/status")
async def get_scheduler_status(
    scheduler: Optional[UploadScheduler] = Depends(get_scheduler)
):
    """Get scheduler state."""
    if scheduler is None:
        return {"success": True, "status": {"is_running": False, "current_upload": None}}
    return {"success": True, "status": scheduler.get_status()}


@router.get("/connection")
async def test_connection(
    client: HostingClient = Depends(get_hosting_client)
):
    """Check hosting credentials with a token exchange."""
    return await client.test_connection()


@router.post("/test/{episode_id}")
async def test_upload(
    episode_id: int,
    uploader: EpisodeUploader = Depends(get_uploader),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster)
):
    """Publish one episode now, outside the schedule."""
    try:
        result = await uploader.upload_episode_now(episode_id, sink=broadcaster)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except HostingClientError as e:
        logger.error(f"Test upload of episode {episode_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e)
        )

    return {"success": True, **result}
