from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from typing import Any, Optional, Sequence

from render_service.models.domain import EnrichmentResult, MediaAsset, SubtitleCue
from render_service.models.scenes import (
    DEFAULT_BACKGROUND,
    DEFAULT_COLORS,
    FALLBACK_SCENE_TYPE,
    KNOWN_SCENE_TYPES,
    MEDIA_PROP_KEYS,
    ResolvedScene,
    SceneBase,
    UnknownScene,
    build_word_list,
    parse_scene,
)
from render_service.services.media_resolver import MediaResolver, build_search_phrases
from render_service.services.narration import NarrationService

_VIDEO_SUFFIXES = (".mp4", ".mov", ".webm", ".mkv", ".m3u8")


@dataclasses.dataclass
class SceneDraft:
    """Working copy of one scene while the enrichment steps fill it in."""

    scene: SceneBase
    type: str
    props: dict[str, Any]
    text: Optional[str] = None
    voice: Optional[str] = None
    audio: Optional[str] = None
    duration: Optional[int] = None
    transition: Optional[str] = None
    audio_seconds: Optional[float] = None
    narrated: bool = False
    media_resolved: bool = False

    @classmethod
    def start(cls, scene: SceneBase) -> "SceneDraft":
        return cls(
            scene=scene,
            type=scene.type,
            props=dict(scene.props),
            text=scene.text,
            voice=scene.voice,
            audio=scene.audio,
            duration=scene.duration_in_frames,
            transition=scene.transition,
        )

    def build(self) -> ResolvedScene:
        return ResolvedScene(
            type=self.type,
            durationInFrames=self.duration,
            props=self.props,
            transition=self.transition,
            text=self.text,
            audio=self.audio,
            voice=self.voice,
        )


def build_subtitles(scenes: Sequence[ResolvedScene]) -> list[SubtitleCue]:
    cues: list[SubtitleCue] = []
    cursor = 0
    for scene in scenes:
        end = cursor + scene.duration_in_frames
        if scene.text and scene.text.strip():
            cues.append(SubtitleCue(text=scene.text.strip(), startFrame=cursor, endFrame=end))
        cursor = end
    return cues


class SceneEnricher:
    """Fills in narration audio, durations, media and subtitles for a raw scene list.

    Every scene runs inside its own failure boundary: a scene that cannot be
    fully resolved is downgraded to a text-only ``KineticText`` scene, so the
    output always has one renderable scene per input scene.
    """

    def __init__(
        self,
        narration: Optional[NarrationService] = None,
        media: Optional[MediaResolver] = None,
        fps: int = 30,
        default_frames: int = 150,
        buffer_frames: int = 15,
        min_video_seconds: float = 5.0,
        concurrency: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.narration = narration
        self.media = media
        self.fps = fps
        self.default_frames = default_frames
        self.buffer_frames = buffer_frames
        self.min_video_seconds = min_video_seconds
        self.concurrency = max(1, concurrency)
        self.log = logger or logging.getLogger(__name__)

    async def enrich(
        self,
        scenes: Sequence[Any],
        default_voice: str,
        compute_duration: bool = False,
    ) -> EnrichmentResult:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(index: int, raw: Any) -> ResolvedScene:
            async with semaphore:
                return await self.resolve_scene(raw, default_voice, compute_duration, index=index)

        resolved = list(await asyncio.gather(*(bounded(idx, raw) for idx, raw in enumerate(scenes))))
        subtitles = build_subtitles(resolved)
        total = sum(scene.duration_in_frames for scene in resolved)
        self.log.info(
            "scenes enriched",
            extra={"scenes": len(resolved), "subtitles": len(subtitles), "total_frames": total},
        )
        return EnrichmentResult(scenes=resolved, subtitles=subtitles, totalFrames=total)

    async def resolve_scene(
        self,
        raw: Any,
        default_voice: str,
        compute_duration: bool = False,
        index: int = 0,
    ) -> ResolvedScene:
        try:
            scene = parse_scene(raw)
        except Exception:
            self.log.warning("scene could not be parsed", extra={"scene": index}, exc_info=True)
            text = raw.get("text") if isinstance(raw, dict) else None
            scene = UnknownScene(type="Unknown", text=text if isinstance(text, str) else None)
        draft = SceneDraft.start(scene)
        try:
            self.derive_text(draft)
            self.apply_defaults(draft)
            await self.attach_narration(draft, default_voice)
            self.reconcile_duration(draft, compute_duration)
            await self.resolve_media(draft)
        except Exception:
            self.log.warning(
                "scene enrichment failed, using fallback",
                extra={"scene": index, "type": scene.type},
                exc_info=True,
            )
        self.finalize(draft)
        return draft.build()

    def derive_text(self, draft: SceneDraft) -> None:
        if not draft.text:
            draft.text = draft.scene.derived_text() or None

    def apply_defaults(self, draft: SceneDraft) -> None:
        if draft.scene.known:
            draft.props = draft.scene.default_props(draft.text)

    async def attach_narration(self, draft: SceneDraft, default_voice: str) -> None:
        if self.narration is None:
            return
        if draft.audio:
            draft.audio_seconds = await self.narration.measure_url(draft.audio)
            return
        if not draft.text:
            return
        voice = draft.voice or default_voice
        try:
            result = await self.narration.synthesize(draft.text, voice)
        except Exception:
            self.log.warning("narration synthesis failed", extra={"voice": voice}, exc_info=True)
            return
        draft.audio = result.url
        draft.audio_seconds = result.seconds
        draft.voice = voice
        draft.narrated = True

    def reconcile_duration(self, draft: SceneDraft, compute_duration: bool) -> None:
        recompute = draft.narrated or compute_duration or draft.duration is None
        if recompute and draft.audio_seconds is not None:
            draft.duration = self.frames_for_audio(draft.audio_seconds)
        elif draft.duration is None:
            draft.duration = self.default_frames

    def frames_for_audio(self, seconds: Any) -> int:
        try:
            frames = math.ceil(float(seconds) * self.fps)
        except (TypeError, ValueError, OverflowError):
            return self.default_frames
        if frames <= 0:
            return self.default_frames
        return frames + self.buffer_frames

    async def resolve_media(self, draft: SceneDraft) -> None:
        scene = draft.scene
        if scene.has_explicit_media():
            draft.media_resolved = True
            if isinstance(scene, UnknownScene):
                self._adopt_explicit_media(draft)
            return
        if not (scene.media_dependent or scene.image_query) or self.media is None:
            return
        phrases = build_search_phrases(scene.image_query, scene.title, draft.text)
        min_duration = draft.duration / self.fps if draft.duration else self.min_video_seconds
        asset = await self.media.resolve(phrases, min_duration)
        if asset is not None:
            self.apply_media(draft, asset)

    def apply_media(self, draft: SceneDraft, asset: MediaAsset) -> None:
        draft.media_resolved = True
        if draft.scene.media_dependent:
            draft.type = "CaptionedVideo"
            draft.props["src"] = asset.url
            draft.props["mediaType"] = asset.kind if asset.kind == "video" else "image"
            draft.props.setdefault("loop", True)
        elif asset.kind == "video":
            draft.props["backgroundVideo"] = asset.url
        else:
            draft.props[draft.scene.image_prop] = asset.url
        self.log.info(
            "scene media resolved",
            extra={"type": draft.type, "provider": asset.provider, "kind": asset.kind},
        )

    def _adopt_explicit_media(self, draft: SceneDraft) -> None:
        url = next(str(draft.props[key]) for key in MEDIA_PROP_KEYS if draft.props.get(key))
        is_video = url.lower().split("?", 1)[0].endswith(_VIDEO_SUFFIXES)
        draft.type = "CaptionedVideo"
        draft.props["src"] = url
        draft.props["mediaType"] = "video" if is_video else "image"

    def downgrade(self, draft: SceneDraft) -> None:
        scene = draft.scene
        words = build_word_list(scene.title, scene.subtitle, draft.text)
        self.log.info("scene downgraded to text", extra={"type": draft.type, "words": len(words)})
        draft.type = FALLBACK_SCENE_TYPE
        draft.props = {
            "texts": words,
            "colors": [DEFAULT_COLORS[idx % len(DEFAULT_COLORS)] for idx in range(len(words))],
            "backgroundColor": DEFAULT_BACKGROUND,
        }

    def finalize(self, draft: SceneDraft) -> None:
        needs_media = draft.scene.media_dependent and not draft.media_resolved
        if needs_media or draft.type not in KNOWN_SCENE_TYPES:
            self.downgrade(draft)
        if not draft.duration or draft.duration <= 0:
            draft.duration = self.default_frames
