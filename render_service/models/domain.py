from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .scenes import ResolvedScene


class JobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class CancelOutcome(str, Enum):
    CANCELLED = "cancelled"
    NOT_CANCELLABLE = "not-cancellable"
    NOT_FOUND = "not-found"


class JobData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    composition_id: str = Field(alias="compositionId")
    input_props: dict[str, Any] = Field(default_factory=dict, alias="inputProps")
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")
    width: Optional[int] = None
    height: Optional[int] = None


class RenderJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: JobStatus
    data: JobData
    progress: Optional[float] = None
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    output_location: Optional[str] = Field(default=None, alias="outputLocation")
    error: Optional[str] = None
    elapsed_seconds: Optional[float] = Field(default=None, alias="elapsedSeconds")
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")


class SubtitleCue(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    text: str
    start_frame: int = Field(alias="startFrame")
    end_frame: int = Field(alias="endFrame")


class MusicTrack(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    style: str
    local_url: str = Field(alias="localUrl")
    duration_in_frames: int = Field(alias="durationInFrames")


class MediaAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    url: str
    provider: str
    duration: Optional[float] = None


class EnrichmentResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scenes: List[ResolvedScene]
    subtitles: List[SubtitleCue]
    total_frames: int = Field(alias="totalFrames")
