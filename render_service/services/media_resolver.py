from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Protocol

from render_service.models.domain import MediaAsset

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "her", "was",
        "one", "our", "out", "has", "have", "this", "that", "with", "from", "they", "will",
        "would", "there", "their", "what", "about", "which", "when", "make", "like", "into",
        "just", "your", "some", "them", "than", "then", "also", "how", "its", "who", "why",
        "been", "were", "more", "very", "these", "those", "here", "each", "over", "such",
    }
)
_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


class VideoSearch(Protocol):
    def enabled(self) -> bool: ...  # pragma: no cover

    async def search_video(self, query: str, min_duration: float) -> MediaAsset | None: ...  # pragma: no cover


class ImageSearch(Protocol):
    def enabled(self) -> bool: ...  # pragma: no cover

    async def search_image(self, query: str) -> MediaAsset | None: ...  # pragma: no cover


class ImageGenerator(Protocol):
    def enabled(self) -> bool: ...  # pragma: no cover

    async def generate(self, prompt: str) -> MediaAsset | None: ...  # pragma: no cover


def extract_keywords(text: str, limit: int = 4) -> list[str]:
    keywords: list[str] = []
    for word in _WORD_RE.findall(text or ""):
        lowered = word.lower()
        if len(word) < 3 or lowered in STOP_WORDS or lowered in keywords:
            continue
        keywords.append(lowered)
        if len(keywords) >= limit:
            break
    return keywords


def build_search_phrases(image_query: str | None, title: str | None, text: str | None) -> list[str]:
    """Ranked, de-duplicated search phrases: explicit query, title, then narration keywords."""
    candidates = [image_query or "", title or "", " ".join(extract_keywords(text or ""))]
    phrases: list[str] = []
    for candidate in candidates:
        candidate = candidate.strip()
        if candidate and candidate.lower() not in (phrase.lower() for phrase in phrases):
            phrases.append(candidate)
    return phrases


class MediaResolver:
    """Video search, then image search, then AI image generation; first hit wins."""

    def __init__(
        self,
        video_search: Optional[VideoSearch] = None,
        image_search: Optional[ImageSearch] = None,
        image_generator: Optional[ImageGenerator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.video_search = video_search
        self.image_search = image_search
        self.image_generator = image_generator
        self.log = logger or logging.getLogger(__name__)

    async def resolve(self, phrases: Iterable[str], min_duration: float) -> MediaAsset | None:
        phrases = [phrase for phrase in phrases if phrase and phrase.strip()]
        if not phrases:
            return None
        if self.video_search is not None and self.video_search.enabled():
            for phrase in phrases:
                asset = await self._attempt("video", self.video_search.search_video(phrase, min_duration), phrase)
                if asset:
                    return asset
        if self.image_search is not None and self.image_search.enabled():
            for phrase in phrases:
                asset = await self._attempt("image", self.image_search.search_image(phrase), phrase)
                if asset:
                    return asset
        if self.image_generator is not None and self.image_generator.enabled():
            asset = await self._attempt("generate", self.image_generator.generate(phrases[0]), phrases[0])
            if asset:
                return asset
        self.log.info("media cascade exhausted", extra={"phrases": phrases})
        return None

    async def _attempt(self, stage: str, call, phrase: str) -> MediaAsset | None:
        try:
            return await call
        except Exception:
            self.log.warning("media provider failed", extra={"stage": stage, "phrase": phrase}, exc_info=True)
            return None
