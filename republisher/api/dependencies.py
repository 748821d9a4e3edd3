"""
Request dependencies for the long-lived services created in the app lifespan.
"""
from typing import Optional

from fastapi import HTTPException, Request, status

from republisher.clients.hosting_client import HostingClient
from republisher.core.events import ProgressBroadcaster
from republisher.services.batch_downloader import BatchDownloader
from republisher.services.upload_scheduler import UploadScheduler
from republisher.services.uploader import EpisodeUploader


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster


def get_downloader(request: Request) -> BatchDownloader:
    return request.app.state.downloader


def get_scheduler(request: Request) -> Optional[UploadScheduler]:
    return getattr(request.app.state, "scheduler", None)


def get_hosting_client(request: Request) -> HostingClient:
    """Hosting client, or 503 when no credentials are configured."""
    client = getattr(request.app.state, "hosting_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hosting API credentials are not configured"
        )
    return client


def get_uploader(request: Request) -> EpisodeUploader:
    uploader = getattr(request.app.state, "uploader", None)
    if uploader is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hosting API credentials are not configured"
        )
    return uploader
