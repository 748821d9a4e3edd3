"""
API v1 router configuration.
"""
from fastapi import APIRouter

from republisher.api.v1 import (
    downloads,
    events,
    series,
    uploads
)

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(downloads.router, prefix="/downloads")
api_router.include_router(series.router, prefix="/series")
api_router.include_router(uploads.router, prefix="/uploads")
api_router.include_router(events.router)
