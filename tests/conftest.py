from __future__ import annotations

import asyncio
import pathlib

import pytest

from render_service.clients.render_engine import CancelSignal, RenderCancelledError, RenderRequest
from render_service.models.domain import MediaAsset
from render_service.services.narration import NarrationService
from render_service.storage.cache import CacheStore


class FakeSynthesizer:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = fail

    def enabled(self) -> bool:
        return True

    async def synthesize(self, text: str, voice: str) -> bytes:
        self.calls.append((text, voice))
        if self.fail:
            raise RuntimeError("speech provider down")
        return f"{voice}:{text}".encode("utf-8")


def fixed_probe(seconds: float):
    async def probe(path: pathlib.Path) -> float:
        return seconds

    return probe


class FakeMediaSource:
    """Stands in for stock search and image generation with scripted answers."""

    def __init__(self, videos=None, images=None, generated=None, fail: bool = False) -> None:
        self.videos = videos or {}
        self.images = images or {}
        self.generated = generated
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def enabled(self) -> bool:
        return True

    async def search_video(self, query: str, min_duration: float) -> MediaAsset | None:
        self.calls.append(("video", query))
        if self.fail:
            raise RuntimeError("search failed")
        url = self.videos.get(query)
        return MediaAsset(kind="video", url=url, provider="fake", duration=min_duration) if url else None

    async def search_image(self, query: str) -> MediaAsset | None:
        self.calls.append(("image", query))
        url = self.images.get(query)
        return MediaAsset(kind="image", url=url, provider="fake") if url else None

    async def generate(self, prompt: str) -> MediaAsset | None:
        self.calls.append(("generate", prompt))
        return MediaAsset(kind="image", url=self.generated, provider="fake") if self.generated else None


class FakeRenderEngine:
    """Render engine whose renders finish only when the test releases them."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.requests: dict[str, RenderRequest] = {}
        self.progress: dict[str, object] = {}
        self.signals: dict[str, CancelSignal] = {}
        self._gates: dict[str, asyncio.Future] = {}

    @staticmethod
    def job_id(request: RenderRequest) -> str:
        return pathlib.Path(request.output_location).stem

    async def render(self, request, on_progress, cancel_signal) -> None:
        job_id = self.job_id(request)
        self.started.append(job_id)
        self.requests[job_id] = request
        self.progress[job_id] = on_progress
        self.signals[job_id] = cancel_signal
        gate = asyncio.get_running_loop().create_future()
        self._gates[job_id] = gate
        waiter = asyncio.ensure_future(cancel_signal.wait())
        try:
            done, _ = await asyncio.wait({gate, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if waiter in done:
            raise RenderCancelledError(cancel_signal.reason or "Render cancelled")
        error = gate.result()
        if error:
            raise RuntimeError(error)

    def finish(self, job_id: str, error: str | None = None) -> None:
        self._gates[job_id].set_result(error)


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def tts_cache(tmp_path: pathlib.Path) -> CacheStore:
    return CacheStore(tmp_path / "audio" / "tts", "http://test/audio/tts")


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def narration(synthesizer: FakeSynthesizer, tts_cache: CacheStore) -> NarrationService:
    return NarrationService(synthesizer, tts_cache, fixed_probe(4.0))
