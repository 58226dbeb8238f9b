from __future__ import annotations

import math
import re
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

KNOWN_SCENE_TYPES: frozenset[str] = frozenset(
    {
        "IntroTitle",
        "KineticText",
        "Comparison",
        "KnowledgeCard",
        "TechCode",
        "LottieSticker",
        "Audiogram",
        "WordStream",
        "SplitScreen",
        "CaptionedVideo",
        "PhoneMockup",
        "DataViz",
        "DataChart",
        "CyberIntro",
        "PhysicsStack",
        "ParticleFlow",
        "ProductShowcase3D",
        "ThreeDText",
        "SmartExplainer",
        "Gallery",
        "SocialStory",
        "PodcastAudio",
    }
)

# Text-only animated type every renderer understands.
FALLBACK_SCENE_TYPE = "KineticText"

MEDIA_PROP_KEYS = ("src", "image", "imageUrl", "videoUrl", "backgroundImage", "backgroundVideo")
RESERVED_KEYS = frozenset({"type", "durationInFrames", "transition", "text", "narration", "voice", "audio", "props"})

DEFAULT_COLORS = ["#ffffff", "#f1c40f", "#3498db", "#e74c3c", "#2ecc71", "#9b59b6"]
DEFAULT_BACKGROUND = "#111111"

_WORD_SPLIT = re.compile(r"[\s,，。.!！?？;；:：、]+")


def build_word_list(*sources: Any, limit: int = 6) -> list[str]:
    """Short display word list taken from the first non-empty sources, never empty."""
    words: list[str] = []
    for source in sources:
        if not source:
            continue
        if isinstance(source, (list, tuple)):
            chunks = [str(item).strip() for item in source]
        else:
            chunks = [chunk.strip() for chunk in _WORD_SPLIT.split(str(source))]
        for chunk in chunks:
            if chunk and chunk not in words:
                words.append(chunk)
            if len(words) >= limit:
                return words
    return words or ["..."]


def _as_string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def _as_number(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


class SceneBase(BaseModel):
    """Raw scene descriptor as submitted by a caller; any field may be missing."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str
    duration_in_frames: Optional[int] = Field(default=None, alias="durationInFrames")
    transition: Optional[Literal["none", "slide", "fade"]] = None
    text: Optional[str] = None
    voice: Optional[str] = None
    audio: Optional[str] = None
    props: dict[str, Any] = Field(default_factory=dict)

    # The renderer cannot draw this type without a resolved media source.
    media_dependent: ClassVar[bool] = False
    # Prop that receives a resolved still image.
    image_prop: ClassVar[str] = "backgroundImage"

    @field_validator("duration_in_frames", mode="before")
    @classmethod
    def _coerce_frames(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number) or number <= 0:
            return None
        return int(math.ceil(number))

    @field_validator("transition", mode="before")
    @classmethod
    def _coerce_transition(cls, value: Any) -> Optional[str]:
        return value if value in ("none", "slide", "fade") else None

    @field_validator("text", "voice", "audio", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def known(self) -> bool:
        return self.type in KNOWN_SCENE_TYPES

    @property
    def title(self) -> str:
        return str(self.props.get("title") or "").strip()

    @property
    def subtitle(self) -> str:
        return str(self.props.get("subtitle") or "").strip()

    @property
    def points(self) -> list[str]:
        return _as_string_list(self.props.get("points"))

    @property
    def items(self) -> list[str]:
        return _as_string_list(self.props.get("items"))

    @property
    def image_query(self) -> str:
        return str(self.props.get("imageQuery") or "").strip()

    def has_explicit_media(self) -> bool:
        return any(self.props.get(key) for key in MEDIA_PROP_KEYS)

    def derived_text(self) -> str:
        """Narration built from title, subtitle, points and items when none was given."""
        parts = [self.title, self.subtitle, *self.points, *self.items]
        return ". ".join(part for part in parts if part)

    def default_props(self, text: str | None) -> dict[str, Any]:
        return dict(self.props)


class IntroTitleScene(SceneBase):
    type: Literal["IntroTitle"] = "IntroTitle"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        if not self.title:
            props["title"] = " ".join(build_word_list(text, limit=6))
        props.setdefault("titleColor", "#ffffff")
        props.setdefault("backgroundColor", DEFAULT_BACKGROUND)
        return props


class KineticTextScene(SceneBase):
    type: Literal["KineticText"] = "KineticText"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        texts = _as_string_list(props.get("texts"))
        if not texts:
            texts = build_word_list(self.title, self.subtitle, self.points or self.items, text)
        props["texts"] = texts
        colors = _as_string_list(props.get("colors"))
        if not colors:
            colors = [DEFAULT_COLORS[idx % len(DEFAULT_COLORS)] for idx in range(len(texts))]
        props["colors"] = colors
        props.setdefault("backgroundColor", DEFAULT_BACKGROUND)
        return props


class KnowledgeCardScene(SceneBase):
    type: Literal["KnowledgeCard"] = "KnowledgeCard"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        props.setdefault("title", self.title)
        if not self.points:
            props["points"] = self.items or build_word_list(text, limit=4)
        props.setdefault("backgroundColor", "#0f172a")
        props.setdefault("textColor", "#ffffff")
        return props


class PhysicsStackScene(SceneBase):
    type: Literal["PhysicsStack"] = "PhysicsStack"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        if not self.items:
            props["items"] = self.points or build_word_list(self.title, text, limit=5)
        return props


class ProductShowcase3DScene(SceneBase):
    type: Literal["ProductShowcase3D"] = "ProductShowcase3D"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        props["boxSize"] = _as_number(props.get("boxSize"), 2.0)
        props["rotationSpeed"] = _as_number(props.get("rotationSpeed"), 1.0)
        props.setdefault("productColor", "#ffcc00")
        props.setdefault("environmentPreset", "city")
        return props


class CaptionedVideoScene(SceneBase):
    type: Literal["CaptionedVideo"] = "CaptionedVideo"

    media_dependent: ClassVar[bool] = True
    image_prop: ClassVar[str] = "src"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        props.setdefault("loop", True)
        return props


class SmartExplainerScene(SceneBase):
    type: Literal["SmartExplainer"] = "SmartExplainer"

    image_prop: ClassVar[str] = "image"

    def default_props(self, text: str | None) -> dict[str, Any]:
        props = dict(self.props)
        props.setdefault("layout", "BulletList" if self.points else "Title")
        if not self.title:
            props["title"] = " ".join(build_word_list(text, limit=6))
        return props


class GenericScene(SceneBase):
    """Known scene type with no required-but-missing fields worth defaulting."""


class UnknownScene(SceneBase):
    """Extension variant: a type the renderer does not know, kept as an open property bag."""

    media_dependent: ClassVar[bool] = True
    image_prop: ClassVar[str] = "src"


SCENE_VARIANTS: dict[str, type[SceneBase]] = {
    "IntroTitle": IntroTitleScene,
    "KineticText": KineticTextScene,
    "KnowledgeCard": KnowledgeCardScene,
    "PhysicsStack": PhysicsStackScene,
    "ProductShowcase3D": ProductShowcase3DScene,
    "CaptionedVideo": CaptionedVideoScene,
    "SmartExplainer": SmartExplainerScene,
}


def parse_scene(raw: Any) -> SceneBase:
    """Turn a loosely-typed scene mapping into its variant. Never raises for odd input."""
    if not isinstance(raw, dict):
        return UnknownScene(type="Unknown")
    scene_type = str(raw.get("type") or "Unknown").strip() or "Unknown"
    props: dict[str, Any] = {key: value for key, value in raw.items() if key not in RESERVED_KEYS}
    explicit_props = raw.get("props")
    if isinstance(explicit_props, dict):
        props.update(explicit_props)
    fields = {
        "durationInFrames": raw.get("durationInFrames"),
        "transition": raw.get("transition"),
        "text": raw.get("text") or raw.get("narration"),
        "voice": raw.get("voice"),
        "audio": raw.get("audio"),
        "props": props,
    }
    if scene_type in SCENE_VARIANTS:
        return SCENE_VARIANTS[scene_type](**fields)
    if scene_type in KNOWN_SCENE_TYPES:
        return GenericScene(type=scene_type, **fields)
    return UnknownScene(type=scene_type, **fields)


class ResolvedScene(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str
    duration_in_frames: int = Field(alias="durationInFrames", gt=0)
    props: dict[str, Any] = Field(default_factory=dict)
    transition: Optional[str] = None
    text: Optional[str] = None
    audio: Optional[str] = None
    voice: Optional[str] = None

    def to_props(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
