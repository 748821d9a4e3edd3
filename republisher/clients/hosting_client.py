"""
Hosting Client - Video hosting platform API access.

Publishing a file is a three step exchange:
1. reserve an upload destination
2. stream the file to that destination (multipart ``file`` field)
3. create the video from the uploaded file URL with its metadata

All calls are authenticated with a client-credentials bearer token that is
refreshed before it expires.
"""
import logging
import os
import time
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional
from uuid import uuid4

import httpx

from republisher.config import settings
from republisher.core.exceptions import HostingClientError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


def _error_detail(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        try:
            body = error.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            detail = body["error"]
            return detail.get("message", str(detail)) if isinstance(detail, dict) else str(detail)
        return f"HTTP {error.response.status_code}"
    return str(error) or error.__class__.__name__


class HostingClient:
    """
    Async client for the hosting platform.

    Args:
        api_key: OAuth client id
        api_secret: OAuth client secret
        base_url: REST API base URL
        token_url: OAuth token endpoint
        http_client: Optional preconfigured client (tests pass a mock transport)
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        chunk_size: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        if not api_key or not api_secret:
            raise ValueError("Hosting API key and secret are required")

        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = (base_url or settings.HOSTING_API_BASE_URL).rstrip("/")
        self.token_url = token_url or settings.HOSTING_TOKEN_URL
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_BYTES

        self.access_token: Optional[str] = None
        self.token_expiry: Optional[float] = None

        self._client = http_client or httpx.AsyncClient(timeout=settings.UPLOAD_TIMEOUT_SECONDS)

    async def close(self):
        await self._client.aclose()

    # Authentication
    # --------------

    async def authenticate(self):
        """Obtain a new access token with the client credentials grant."""
        try:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.api_key,
                    "client_secret": self.api_secret,
                    "scope": settings.HOSTING_SCOPE,
                },
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Hosting authentication failed: {_error_detail(e)}")
            raise HostingClientError("Failed to authenticate with hosting API") from e

        self.access_token = payload.get("access_token")
        if not self.access_token:
            raise HostingClientError("Hosting API returned no access token")

        # Refresh a margin before the real expiry
        expires_in = payload.get("expires_in") or 3600
        self.token_expiry = time.time() + (expires_in - settings.HOSTING_TOKEN_REFRESH_MARGIN_SECONDS)

        logger.info("Hosting authentication successful")

    def is_token_valid(self) -> bool:
        return (
            self.access_token is not None
            and self.token_expiry is not None
            and time.time() < self.token_expiry
        )

    async def ensure_valid_token(self):
        if not self.is_token_valid():
            await self.authenticate()

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    # Publish steps
    # -------------

    async def reserve_upload_destination(self) -> Dict[str, Any]:
        """
        Ask the platform for an upload destination.

        Returns:
            Dict containing at least ``upload_url``
        """
        await self.ensure_valid_token()
        try:
            response = await self._client.get(
                f"{self.base_url}/rest/file/upload", headers=self._auth_headers()
            )
            response.raise_for_status()
            destination = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HostingClientError(f"Failed to get upload URL: {_error_detail(e)}") from e

        if not destination.get("upload_url"):
            raise HostingClientError("Upload destination response has no upload_url")
        return destination

    async def stream_bytes(
        self,
        file_path: str,
        upload_url: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """
        Stream a local file to the reserved destination.

        Args:
            file_path: Local file to send
            upload_url: Destination from ``reserve_upload_destination``
            on_progress: Awaited with the integer percent sent

        Returns:
            Remote locator of the uploaded file
        """
        path = Path(file_path)
        file_size = path.stat().st_size
        boundary = uuid4().hex
        head = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{path.name}"\r\n'
            f"Content-Type: application/octet-stream\r\n\r\n"
        ).encode()
        tail = f"\r\n--{boundary}--\r\n".encode()

        logger.info(f"Uploading {path} ({file_size / 1024 / 1024:.2f} MB)")

        async def body() -> AsyncIterator[bytes]:
            yield head
            sent = 0
            last_percent = -1
            with open(path, "rb") as fh:
                while True:
                    chunk = fh.read(self.chunk_size)
                    if not chunk:
                        break
                    sent += len(chunk)
                    yield chunk
                    percent = round(sent / file_size * 100) if file_size else 100
                    if on_progress and percent != last_percent:
                        last_percent = percent
                        await on_progress(percent)
            yield tail

        try:
            response = await self._client.post(
                upload_url,
                content=body(),
                headers={
                    "Content-Type": f"multipart/form-data; boundary={boundary}",
                    "Content-Length": str(len(head) + file_size + len(tail)),
                },
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HostingClientError(f"Failed to upload file: {_error_detail(e)}") from e

        remote_url = payload.get("upload_url") or payload.get("url")
        if not remote_url:
            raise HostingClientError("Upload response has no file URL")
        return remote_url

    async def publish(self, remote_url: str, title: str, description: Optional[str] = None) -> str:
        """
        Create and publish a video from an uploaded file.

        Returns:
            Remote video id
        """
        await self.ensure_valid_token()
        try:
            response = await self._client.post(
                f"{self.base_url}/rest/video/create",
                headers=self._auth_headers(),
                json={
                    "url": remote_url,
                    "title": title,
                    "description": description or "",
                    "published": True,
                },
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HostingClientError(f"Failed to publish video: {_error_detail(e)}") from e

        video_id = payload.get("id")
        if not video_id:
            raise HostingClientError("Publish response has no video id")

        logger.info(f"Video published: {video_id}")
        return str(video_id)

    async def upload_and_publish(
        self,
        file_path: str,
        title: str,
        description: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """Run reserve, stream and publish for one file. Returns the remote video id."""
        if not os.path.exists(file_path):
            raise HostingClientError(f"Video file not found: {file_path}")

        logger.info(f"Starting upload: {title}")
        destination = await self.reserve_upload_destination()
        remote_url = await self.stream_bytes(file_path, destination["upload_url"], on_progress)
        return await self.publish(remote_url, title, description)

    async def test_connection(self) -> Dict[str, Any]:
        """Check the configured credentials by forcing a token exchange."""
        try:
            await self.authenticate()
            return {
                "success": True,
                "message": "Hosting authentication successful",
                "token_valid": self.is_token_valid(),
            }
        except HostingClientError as e:
            return {"success": False, "message": str(e)}


def create_hosting_client() -> Optional[HostingClient]:
    """Build a hosting client from settings, or None when credentials are missing."""
    if not settings.hosting_configured:
        return None
    return HostingClient(settings.HOSTING_API_KEY, settings.HOSTING_API_SECRET)
