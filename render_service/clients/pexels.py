from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from render_service.models.domain import MediaAsset


class PexelsClient:
    """Stock video and photo search against the Pexels API."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.pexels.com",
        orientation: str = "landscape",
        timeout: float = 20.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.orientation = orientation
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": self.api_key}
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()

    async def search_video(self, query: str, min_duration: float) -> MediaAsset | None:
        if not self.enabled():
            return None
        data = await self._get(
            "/videos/search",
            {"query": query, "orientation": self.orientation, "per_page": 10, "size": "medium"},
        )
        for video in data.get("videos") or []:
            duration = float(video.get("duration") or 0)
            if duration < min_duration:
                continue
            link = self._best_video_file(video.get("video_files") or [])
            if link:
                self.log.info(
                    "pexels video selected",
                    extra={"query": query, "video_id": video.get("id"), "duration": duration},
                )
                return MediaAsset(kind="video", url=link, provider="pexels", duration=duration)
        return None

    async def search_image(self, query: str) -> MediaAsset | None:
        if not self.enabled():
            return None
        data = await self._get(
            "/v1/search",
            {"query": query, "orientation": self.orientation, "per_page": 5},
        )
        for photo in data.get("photos") or []:
            sources = photo.get("src") or {}
            url = sources.get("large2x") or sources.get("original") or sources.get("large")
            if url:
                return MediaAsset(kind="image", url=url, provider="pexels")
        return None

    def _best_video_file(self, files: list[dict[str, Any]]) -> str | None:
        mp4 = [item for item in files if item.get("link") and item.get("file_type", "video/mp4") == "video/mp4"]
        if not mp4:
            return None
        # largest file up to 1080p
        capped = [item for item in mp4 if (item.get("height") or 0) <= 1080] or mp4
        best = max(capped, key=lambda item: item.get("height") or 0)
        return best["link"]
