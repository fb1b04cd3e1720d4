"""Unit tests for render parameter derivation."""

import pytest

from export_service.models.domain import RenderParams
from export_service.models.dto import ExportProject, ExportSettings
from export_service.services.render_params import (
    DEFAULT_LIMITS,
    RenderLimits,
    compute_duration_frames,
    derive_render_params,
    explicit_frame_range,
    project_fps,
)


def _project(**data):
    return ExportProject.model_validate(data)


def _settings(**data):
    base = {"container": "mp4", "videoCodec": "h264"}
    base.update(data)
    return ExportSettings.model_validate(base)


class TestDefaults:
    """Sparse documents still yield usable numbers."""

    def test_empty_project_uses_defaults(self):
        params = derive_render_params(_project(), _settings())

        assert params == RenderParams(width=640, height=360, fps=24.0, duration_seconds=1.0)

    def test_project_fps_prefers_timeline(self):
        project = _project(timeline={"fps": 30, "clips": []}, settings={"fps": 25})
        assert project_fps(project) == 30

    def test_project_fps_falls_back_to_settings(self):
        project = _project(timeline={"fps": 0, "clips": []}, settings={"fps": 25})
        assert project_fps(project) == 25

    def test_zero_dimensions_fall_back(self):
        project = _project(settings={"width": 0, "height": -5, "fps": 24})
        params = derive_render_params(project, _settings())

        assert (params.width, params.height) == (640, 360)

    def test_tiny_scale_floors_at_minimum(self):
        project = _project(settings={"width": 100, "height": 100, "fps": 24})
        params = derive_render_params(project, _settings(renderResolutionScale=0.01))

        assert params.width == 16
        assert params.height == 16


class TestGeometry:
    """Output resolution, scale and fps overrides."""

    def test_custom_resolution_requires_both_values(self):
        project = _project(settings={"width": 1920, "height": 1080, "fps": 24})

        params = derive_render_params(project, _settings(outputResolution="custom", width=1280))
        assert (params.width, params.height) == (1920, 1080)

        params = derive_render_params(project, _settings(outputResolution="custom", width=1280, height=720))
        assert (params.width, params.height) == (1280, 720)

    def test_scale_is_applied_and_rounded(self):
        project = _project(settings={"width": 1920, "height": 1080, "fps": 24})
        params = derive_render_params(project, _settings(renderResolutionScale=0.5))

        assert (params.width, params.height) == (960, 540)

    def test_fps_override(self):
        project = _project(settings={"fps": 24})

        assert derive_render_params(project, _settings(fpsMode="override", fps=60)).fps == 60
        assert derive_render_params(project, _settings(fpsMode="override", fps=-1)).fps == 24

    def test_fps_ignored_without_override_mode(self):
        project = _project(settings={"fps": 30})
        assert derive_render_params(project, _settings(fps=60)).fps == 30

    def test_sanity_clamps(self):
        limits = RenderLimits()
        project = _project(settings={"width": 100000, "height": 100, "fps": 1000})
        params = derive_render_params(project, _settings(), limits)

        assert params.width == limits.max_dimension
        assert params.fps == limits.max_fps

    def test_overflowing_scale_clamps_to_max_dimension(self):
        project = _project(settings={"width": 1920, "height": 1080, "fps": 24})
        params = derive_render_params(project, _settings(renderResolutionScale=1e308))

        assert params.width == DEFAULT_LIMITS.max_dimension
        assert params.height == DEFAULT_LIMITS.max_dimension
        assert DEFAULT_LIMITS.exceeds_extreme(params)


class TestDuration:
    """Frame counting for each selector kind."""

    def test_timeline_span_of_single_clip(self):
        project = _project(
            timeline={"fps": 24, "clips": [
                {"id": "c1", "sourceId": "s1", "startFrame": 0, "endFrame": 239, "timelineStartFrame": 0},
            ]},
        )
        params = derive_render_params(project, _settings())

        assert params.duration_seconds == pytest.approx(10.0)

    def test_timeline_union_span(self):
        project = _project(
            timeline={"fps": 24, "clips": [
                {"id": "c1", "startFrame": 0, "endFrame": 23, "timelineStartFrame": 0},
                {"id": "c2", "startFrame": 100, "endFrame": 147, "timelineStartFrame": 48},
            ]},
        )
        # second clip ends at 48 + 47 = 95
        assert compute_duration_frames(project, _settings()) == 96

    def test_explicit_range(self):
        project = _project(timeline={"fps": 24, "clips": []})
        settings = _settings(source={"kind": "timeline", "inFrame": 10, "outFrame": 57})

        assert compute_duration_frames(project, settings) == 48

    def test_inverted_range_falls_back_to_one_second(self):
        project = _project(
            timeline={"fps": 30, "clips": [
                {"id": "c1", "startFrame": 0, "endFrame": 299, "timelineStartFrame": 0},
            ]},
        )
        settings = _settings(source={"kind": "timeline", "inFrame": 50, "outFrame": 10})
        params = derive_render_params(project, settings)

        assert params.duration_seconds == pytest.approx(1.0)

    def test_half_range_uses_union_span(self):
        project = _project(
            timeline={"fps": 24, "clips": [
                {"id": "c1", "startFrame": 0, "endFrame": 47, "timelineStartFrame": 0},
            ]},
        )
        settings = _settings(source={"kind": "timeline", "inFrame": 10})

        assert compute_duration_frames(project, settings) == 48

    def test_clip_selector(self):
        project = _project(
            timeline={"fps": 24, "clips": [
                {"id": "c1", "startFrame": 24, "endFrame": 71},
            ]},
        )
        settings = _settings(source={"kind": "clip", "clipId": "c1"})

        assert compute_duration_frames(project, settings) == 48

    def test_unknown_clip_falls_back(self):
        project = _project(timeline={"fps": 24, "clips": []})
        settings = _settings(source={"kind": "clip", "clipId": "missing"})

        assert compute_duration_frames(project, settings) == 24

    def test_source_selector_uses_stored_duration(self):
        project = _project(
            sources=[{"id": "s1", "durationFrames": 120}],
            timeline={"fps": 24, "clips": []},
        )
        settings = _settings(source={"kind": "source", "sourceId": "s1"})

        assert derive_render_params(project, settings).duration_seconds == pytest.approx(5.0)

    def test_duration_has_floor(self):
        project = _project(settings={"fps": 240})
        settings = _settings(source={"kind": "timeline", "inFrame": 0, "outFrame": 0})

        assert derive_render_params(project, settings).duration_seconds == pytest.approx(0.1)

    def test_huge_duration_stays_finite(self):
        project = _project(
            sources=[{"id": "s1", "durationFrames": 1e308}],
            timeline={"fps": 24, "clips": []},
        )
        settings = _settings(source={"kind": "source", "sourceId": "s1"}, fpsMode="override", fps=0.5)
        params = derive_render_params(project, settings)

        assert params.duration_seconds == DEFAULT_LIMITS.max_duration_seconds
        assert DEFAULT_LIMITS.exceeds_extreme(params)


class TestExplicitFrameRange:

    def test_only_for_timeline_selectors(self):
        settings = _settings(source={"kind": "clip", "clipId": "c1", "inFrame": 0, "outFrame": 10})
        assert explicit_frame_range(settings.source) is None

    def test_valid_range(self):
        settings = _settings(source={"kind": "timeline", "inFrame": 5, "outFrame": 10})
        assert explicit_frame_range(settings.source) == (5, 10)


class TestLimits:
    """Soft warnings and extreme rejection."""

    def test_soft_warnings(self):
        params = RenderParams(width=4096, height=2160, fps=24, duration_seconds=900)
        warnings = DEFAULT_LIMITS.soft_warnings(params)

        assert len(warnings) == 2
        assert not DEFAULT_LIMITS.exceeds_extreme(params)

    def test_extreme_dimension(self):
        params = RenderParams(width=10000, height=1080, fps=24, duration_seconds=10)
        assert DEFAULT_LIMITS.exceeds_extreme(params)

    def test_extreme_duration(self):
        params = RenderParams(width=1920, height=1080, fps=24, duration_seconds=3601)
        assert DEFAULT_LIMITS.exceeds_extreme(params)
