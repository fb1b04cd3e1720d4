"""Data Transfer Objects - API contracts.

Incoming project and settings documents come from the editor client in
camelCase; fields are exposed in snake_case on the Python side. Project
fields are all optional because the render-parameter derivation has a
default for every one of them.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from export_service.models.domain import JobStatus


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectSource(CamelModel):
    """A stored input media asset referenced by the timeline."""
    id: str
    hash: Optional[str] = None
    original_name: Optional[str] = None
    duration_frames: Optional[float] = None


class TimelineClip(CamelModel):
    """A placement of a source sub-range on the timeline."""
    id: str
    source_id: Optional[str] = None
    start_frame: Optional[float] = None
    end_frame: Optional[float] = None
    timeline_start_frame: Optional[float] = None


class ProjectTimeline(CamelModel):
    fps: Optional[float] = None
    clips: List[TimelineClip] = Field(default_factory=list)


class ProjectSettings(CamelModel):
    width: Optional[float] = None
    height: Optional[float] = None
    fps: Optional[float] = None


class ExportProject(CamelModel):
    """Project document supplied with an export request (read-only)."""
    sources: List[ProjectSource] = Field(default_factory=list)
    timeline: Optional[ProjectTimeline] = None
    settings: Optional[ProjectSettings] = None

    def find_source(self, source_id: Optional[str]) -> Optional[ProjectSource]:
        if not source_id:
            return None
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def find_clip(self, clip_id: Optional[str]) -> Optional[TimelineClip]:
        if not clip_id or self.timeline is None:
            return None
        for clip in self.timeline.clips:
            if clip.id == clip_id:
                return clip
        return None

    @property
    def clips(self) -> List[TimelineClip]:
        return self.timeline.clips if self.timeline else []


class SourceSelector(CamelModel):
    """Which part of the project the export covers."""
    kind: Literal["timeline", "clip", "source"] = "timeline"
    clip_id: Optional[str] = None
    source_id: Optional[str] = None
    in_frame: Optional[float] = None
    out_frame: Optional[float] = None


class RateControl(CamelModel):
    mode: Literal["crf", "bitrate"] = "crf"
    value: Optional[Union[float, str]] = None


class ExportSettings(CamelModel):
    """Per-job output settings."""
    container: Literal["mp4", "mov", "webm", "mkv"]
    video_codec: str = Field(..., min_length=1)
    audio_codec: Optional[str] = None
    output_resolution: Literal["project", "custom"] = "project"
    width: Optional[float] = None
    height: Optional[float] = None
    render_resolution_scale: Optional[float] = None
    fps_mode: Literal["project", "override"] = "project"
    fps: Optional[float] = None
    pixel_format: Optional[str] = None
    rate_control: Optional[RateControl] = None
    source: SourceSelector = Field(default_factory=SourceSelector)
    include_audio: bool = False


class ExportRequest(CamelModel):
    """Body of a submission."""
    project: ExportProject = Field(default_factory=ExportProject)
    settings: ExportSettings
    client_version: Optional[str] = None


class ExportSubmitResponse(CamelModel):
    job_id: str


class DebugEntryDTO(CamelModel):
    at: datetime
    message: str
    data: Optional[Dict[str, Any]] = None


class ExportStatusDTO(CamelModel):
    """Export job status for polling clients."""
    id: str
    status: JobStatus
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    error: Optional[str] = None
    download_url: Optional[str] = None
    debug: Optional[List[DebugEntryDTO]] = None

    def to_response(self) -> Dict[str, Any]:
        """Serialize, leaving out downloadUrl and debug when they are unset."""
        data = self.model_dump(mode="json", by_alias=True)
        if self.download_url is None:
            data.pop("downloadUrl")
        if self.debug is None:
            data.pop("debug")
        return data


class UploadResponse(CamelModel):
    ok: bool = True
    hash: str
    cached: bool
    path: str
