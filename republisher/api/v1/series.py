"""
Series API - Read and delete catalog series.
"""
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from republisher.database.session import get_db
from republisher.repositories.series_repository import SeriesRepository
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["series"])


@router.get("/{series_id}")
async def get_series(
    series_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Get a series with the download state of its episodes."""
    repo = SeriesRepository(db)
    series = await repo.get_by_id(series_id)
    if not series:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series {series_id} not found"
        )

    downloaded = await repo.get_downloaded_episodes(series_id)
    return {
        "id": series.id,
        "external_id": series.external_id,
        "title": series.title,
        "intro": series.intro,
        "episode_count": await repo.count_episodes(series_id),
        "downloaded_count": len(downloaded),
    }


@router.delete("/{series_id}")
async def delete_series(
    series_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Delete a series with its episodes, queue items and scheduled uploads."""
    deleted = await SeriesRepository(db).delete(series_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Series {series_id} not found"
        )

    logger.info(f"Deleted series {series_id}")
    return {"success": True, "message": f"Series {series_id} deleted"}
