from __future__ import annotations

import asyncio
import logging
import math
import pathlib
import random
from typing import Any, Awaitable, Callable, Optional

from render_service.clients.s3_storage import BucketStore
from render_service.models.domain import MusicTrack
from render_service.storage.cache import CacheStore


class MusicLibrary:
    """Background tracks stored in a bucket as ``<root>/<style>/<track>.mp3``."""

    def __init__(
        self,
        storage: BucketStore,
        cache: CacheStore,
        probe: Callable[[pathlib.Path], Awaitable[float]],
        root_prefix: str = "music",
        fps: int = 30,
        fallback_seconds: float = 180.0,
        rng: random.Random | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.storage = storage
        self.cache = cache
        self.probe = probe
        self.root_prefix = root_prefix.strip("/")
        self.fps = fps
        self.fallback_seconds = fallback_seconds
        self.rng = rng or random.Random()
        self.log = logger or logging.getLogger(__name__)

    async def list_styles(self) -> list[str]:
        try:
            styles = await asyncio.to_thread(self.storage.folders, self.root_prefix)
        except Exception:
            self.log.warning("music style listing failed", extra={"root": self.root_prefix}, exc_info=True)
            return []
        self.log.info("music styles listed", extra={"count": len(styles)})
        return styles

    async def get_track(self, style: str) -> MusicTrack | None:
        style = (style or "").strip().strip("/")
        if not style:
            return None
        try:
            return await self._resolve_track(style)
        except Exception:
            self.log.warning("music resolution failed", extra={"style": style}, exc_info=True)
            return None

    async def _resolve_track(self, style: str) -> MusicTrack | None:
        prefix = "/".join(part for part in (self.root_prefix, style) if part)
        objects = await asyncio.to_thread(self.storage.objects, prefix)
        tracks = [obj["key"] for obj in objects if str(obj.get("key", "")).lower().endswith(".mp3")]
        if not tracks:
            self.log.warning("no music tracks for style", extra={"style": style})
            return None
        track_key = self.rng.choice(tracks)
        cache_key = self.cache.key(track_key)
        path = self.cache.lookup(cache_key)
        if path is None:
            data = await asyncio.to_thread(self.storage.fetch, track_key)
            path = self.cache.write(cache_key, data)
            self.log.info("music track cached", extra={"track": track_key, "size": len(data)})
        seconds = await self._measure(path)
        return MusicTrack(
            name=pathlib.PurePosixPath(track_key).name,
            style=style,
            localUrl=self.cache.url_for(path),
            durationInFrames=math.ceil(seconds * self.fps),
        )

    async def _measure(self, path: pathlib.Path) -> float:
        try:
            seconds = await self.probe(path)
        except Exception:
            self.log.warning("music duration probe failed", extra={"path": str(path)}, exc_info=True)
            return self.fallback_seconds
        return seconds if seconds and seconds > 0 else self.fallback_seconds

    async def apply_background_music(self, props: dict[str, Any]) -> dict[str, Any]:
        """Return props with ``bgMusic.src`` filled from the requested style, or unchanged."""
        bg_music = props.get("bgMusic")
        if not isinstance(bg_music, dict) or not bg_music.get("style"):
            return props
        track = await self.get_track(str(bg_music["style"]))
        if track is None:
            self.log.warning("rendering without background music", extra={"style": bg_music["style"]})
            return props
        updated = dict(bg_music)
        updated["src"] = track.local_url
        updated.setdefault("loop", True)
        return {**props, "bgMusic": updated}
