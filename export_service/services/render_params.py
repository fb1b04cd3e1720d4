"""Render parameter derivation.

Turns a declarative project + export settings pair into the concrete numbers
handed to the encoder. Everything here is pure: no I/O, no exceptions, and
every returned value is finite and positive no matter how sparse or odd the
input document is.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from export_service.models.domain import RenderParams
from export_service.models.dto import ExportProject, ExportSettings, SourceSelector

DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 360
DEFAULT_FPS = 24.0
MIN_DIMENSION = 16
MIN_DURATION_SECONDS = 0.1


@dataclass(frozen=True)
class RenderLimits:
    """Size thresholds for renders.

    ``max_dimension``, ``max_fps`` and ``max_duration_seconds`` are sanity
    clamps applied during derivation. The soft thresholds only produce warnings; the extreme
    thresholds are enforced by the scheduler, which fails the job.
    """
    max_dimension: int = 16384
    max_fps: float = 240.0
    max_duration_seconds: float = 24 * 60 * 60
    soft_max_width: int = 3840
    soft_max_height: int = 2160
    soft_max_duration_seconds: float = 10 * 60
    extreme_max_dimension: int = 8192
    extreme_max_duration_seconds: float = 60 * 60

    def soft_warnings(self, params: RenderParams) -> List[str]:
        warnings = []
        if params.width > self.soft_max_width or params.height > self.soft_max_height:
            warnings.append(f"large resolution requested: {params.width}x{params.height}")
        if params.duration_seconds > self.soft_max_duration_seconds:
            warnings.append(f"long duration requested: {params.duration_seconds:.1f}s")
        return warnings

    def exceeds_extreme(self, params: RenderParams) -> bool:
        return (
            params.width > self.extreme_max_dimension
            or params.height > self.extreme_max_dimension
            or params.duration_seconds > self.extreme_max_duration_seconds
        )


DEFAULT_LIMITS = RenderLimits()


def _positive(value) -> Optional[float]:
    """Return ``value`` as a float if it is a finite positive number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _finite(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _at_least_one_frame(frames: Optional[float]) -> float:
    if frames is None or not math.isfinite(frames) or frames < 1:
        return 1
    return frames


def _scaled_dimension(size: float, scale: float, limits: RenderLimits) -> int:
    scaled = size * scale
    if not math.isfinite(scaled):
        return limits.max_dimension
    return min(limits.max_dimension, max(MIN_DIMENSION, int(round(scaled))))


def project_fps(project: ExportProject) -> float:
    """Frame rate of the project: timeline, then project settings, then 24."""
    timeline_fps = _positive(project.timeline.fps) if project.timeline else None
    settings_fps = _positive(project.settings.fps) if project.settings else None
    return timeline_fps or settings_fps or DEFAULT_FPS


def project_geometry(project: ExportProject):
    """Native (width, height) configured on the project, if any."""
    if project.settings is None:
        return None, None
    return _positive(project.settings.width), _positive(project.settings.height)


def explicit_frame_range(selector: SourceSelector) -> Optional[Tuple[float, float]]:
    """Valid (in, out) frame pair on a timeline selector, or None."""
    if selector.kind != "timeline":
        return None
    in_frame = _finite(selector.in_frame)
    out_frame = _finite(selector.out_frame)
    if in_frame is None or out_frame is None or in_frame > out_frame:
        return None
    return in_frame, out_frame


def _timeline_span(project: ExportProject) -> Optional[float]:
    clips = project.clips
    if not clips:
        return None
    starts = []
    ends = []
    for clip in clips:
        placed_at = _finite(clip.timeline_start_frame) or 0.0
        length = (_finite(clip.end_frame) or 0.0) - (_finite(clip.start_frame) or 0.0)
        starts.append(placed_at)
        ends.append(placed_at + length)
    return max(ends) - min(starts) + 1


def compute_duration_frames(project: ExportProject, settings: ExportSettings) -> float:
    """Number of frames to render for the selected part of the project.

    Precedence: explicit timeline in/out range, timeline union span, clip
    span, stored source duration, then one second at the project frame rate.
    An inverted range (in after out) goes straight to the one-second fallback.
    """
    selector = settings.source
    fallback = _at_least_one_frame(project_fps(project))
    frames = None

    if selector.kind == "timeline":
        if selector.in_frame is not None and selector.out_frame is not None:
            frame_range = explicit_frame_range(selector)
            if frame_range is not None:
                frames = frame_range[1] - frame_range[0] + 1
        else:
            span = _timeline_span(project)
            frames = span if span is not None else fallback
    elif selector.kind == "clip":
        clip = project.find_clip(selector.clip_id)
        if clip is not None:
            start = _finite(clip.start_frame) or 0.0
            end = _finite(clip.end_frame) or 0.0
            frames = end - start + 1
    elif selector.kind == "source":
        source = project.find_source(selector.source_id)
        if source is not None:
            frames = _positive(source.duration_frames)

    if frames is None or not math.isfinite(frames) or frames <= 0:
        frames = fallback
    return _at_least_one_frame(frames)


def derive_render_params(
    project: ExportProject,
    settings: ExportSettings,
    limits: RenderLimits = DEFAULT_LIMITS,
) -> RenderParams:
    """Compute width, height, fps and duration for an export."""
    native_width, native_height = project_geometry(project)
    width = native_width or DEFAULT_WIDTH
    height = native_height or DEFAULT_HEIGHT

    if settings.output_resolution == "custom":
        custom_width = _positive(settings.width)
        custom_height = _positive(settings.height)
        if custom_width and custom_height:
            width, height = custom_width, custom_height

    scale = _positive(settings.render_resolution_scale) or 1.0
    width = _scaled_dimension(width, scale, limits)
    height = _scaled_dimension(height, scale, limits)

    fps = project_fps(project)
    if settings.fps_mode == "override" and settings.fps is not None:
        fps = _positive(settings.fps) or DEFAULT_FPS
    fps = min(limits.max_fps, fps)

    duration_frames = compute_duration_frames(project, settings)
    duration_seconds = min(limits.max_duration_seconds, max(MIN_DURATION_SECONDS, duration_frames / fps))

    return RenderParams(width=width, height=height, fps=fps, duration_seconds=duration_seconds)


def approx_uncompressed_gb(params: RenderParams, bytes_per_pixel: int = 4) -> float:
    """Rough size of the raw frames, for diagnostics."""
    frames = params.fps * params.duration_seconds
    return params.width * params.height * frames * bytes_per_pixel / (1024 ** 3)
