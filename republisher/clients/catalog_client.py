"""
Catalog Client - Content catalog access for series details and episode streams.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from republisher.config import settings
from republisher.core.exceptions import CatalogClientError

logger = logging.getLogger(__name__)

_LIST_KEYS = ("video_list", "video_info", "videos")
_URL_KEYS = ("play_url", "url", "video_url", "main_url")


def extract_video_url(stream_response: Dict[str, Any]) -> Optional[str]:
    """
    Pull a playable URL out of a stream response.

    The catalog has returned several shapes over time: a list of variants under
    one of several keys, or the URL directly on the payload.
    """
    data = stream_response.get("data") or stream_response
    if not isinstance(data, dict):
        return None

    for key in _LIST_KEYS:
        variants = data.get(key)
        if variants:
            first = variants[0]
            if isinstance(first, dict):
                return next((first[k] for k in _URL_KEYS if first.get(k)), None)
            return None

    return next((data[k] for k in _URL_KEYS if data.get(k)), None)


class CatalogClient:
    """
    Async client for the content catalog.

    Args:
        base_url: Catalog API base URL
        timeout: Request timeout in seconds
        http_client: Optional preconfigured client (tests pass a mock transport)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.CATALOG_TIMEOUT_SECONDS,
            headers={"User-Agent": settings.CATALOG_USER_AGENT},
            follow_redirects=True,
        )

    async def close(self):
        await self._client.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise CatalogClientError(f"Catalog request {path} failed: {e}") from e
        except ValueError as e:
            raise CatalogClientError(f"Catalog request {path} returned invalid JSON") from e

    async def fetch_series_detail(self, external_id: str) -> Dict[str, Any]:
        """
        Fetch series metadata and its episode list.

        Args:
            external_id: Catalog series identifier

        Returns:
            Dict with title, intro, cover_url, episode_count and episodes
        """
        payload = await self._get_json("/series/detail", {"series_id": external_id})
        video_data = (payload.get("data") or {}).get("video_data") or {}

        episodes: List[Dict[str, Any]] = []
        for item in video_data.get("video_list") or []:
            episodes.append({
                "external_id": item.get("vid"),
                "title": item.get("title") or item.get("name") or "",
                "index_sequence": item.get("vid_index") or 0,
                "duration": item.get("duration") or 0,
                "video_height": item.get("video_height"),
                "video_width": item.get("video_width") or item.get("video_weight"),
                "cover_url": item.get("episode_cover"),
            })

        return {
            "external_id": external_id,
            "title": video_data.get("series_title") or "",
            "intro": video_data.get("series_intro") or "",
            "cover_url": video_data.get("series_cover"),
            "episode_count": video_data.get("episode_cnt") or len(episodes),
            "episodes": episodes,
        }

    async def resolve_stream_url(self, external_episode_id: str) -> Optional[str]:
        """
        Resolve the download URL of an episode.

        Returns:
            URL string, or None when the catalog has no playable variant
        """
        payload = await self._get_json("/video/stream", {"video_id": external_episode_id})
        return extract_video_url(payload)

    @asynccontextmanager
    async def stream(self, url: str, timeout: Optional[float] = None) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming GET for episode bytes.

        Yields:
            httpx.Response with an unread body; iterate ``aiter_bytes``
        """
        request_timeout = timeout or settings.DOWNLOAD_TIMEOUT_SECONDS
        async with self._client.stream("GET", url, timeout=request_timeout) as response:
            response.raise_for_status()
            yield response
