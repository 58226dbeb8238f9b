from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import RenderJob, SubtitleCue
from .scenes import ResolvedScene


class RenderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    composition_id: str = Field(..., alias="compositionId")
    input_props: Optional[dict[str, Any]] = Field(default=None, alias="inputProps")
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)

    @field_validator("composition_id")
    @classmethod
    def validate_composition_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("compositionId must be a non-empty string")
        return value.strip()


class RenderCreatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")


class RenderJobListResponse(BaseModel):
    items: List[RenderJob]


class MessageResponse(BaseModel):
    message: str


class EnrichRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scenes: List[Any]
    voice: Optional[str] = None
    compute_duration: bool = Field(default=False, alias="computeDuration")


class EnrichResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scenes: List[ResolvedScene]
    subtitles: List[SubtitleCue]
    total_frames: int = Field(alias="totalFrames")


class MusicStylesResponse(BaseModel):
    styles: List[str]
