from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from render_service.clients.tts import SpeechSynthesizer
from render_service.storage.cache import CacheStore

DurationProbe = Callable[[pathlib.Path], Awaitable[float]]


@dataclass(frozen=True)
class NarrationResult:
    path: pathlib.Path
    url: str
    seconds: float
    generated: bool


class NarrationService:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        cache: CacheStore,
        probe: DurationProbe,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.cache = cache
        self.probe = probe
        self.log = logger or logging.getLogger(__name__)

    async def synthesize(self, text: str, voice: str) -> NarrationResult:
        key = self.cache.key(text, voice)
        path = self.cache.lookup(key)
        generated = False
        if path is None:
            audio = await self.synthesizer.synthesize(text, voice)
            path = self.cache.write(key, audio)
            generated = True
            self.log.info("narration synthesized", extra={"key": key, "voice": voice})
        else:
            self.log.debug("narration cache hit", extra={"key": key, "voice": voice})
        seconds = await self._measure(path)
        return NarrationResult(path=path, url=self.cache.url_for(path), seconds=seconds, generated=generated)

    async def measure_url(self, url: str) -> float | None:
        """Duration of an already attached narration, when it lives in this cache."""
        prefix = f"{self.cache.public_url_base}/"
        if not url.startswith(prefix):
            return None
        path = self.cache.directory / url[len(prefix):]
        if path.parent != self.cache.directory or not path.is_file():
            return None
        return await self._measure(path)

    async def _measure(self, path: pathlib.Path) -> float:
        try:
            return await self.probe(path)
        except Exception:
            self.log.warning("narration duration probe failed", extra={"path": str(path)}, exc_info=True)
            return 0.0
