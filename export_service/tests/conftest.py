"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List

# Add repo root for imports - do this before other imports
repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

import pytest

from export_service.encoder import (
    EncodeAbandoned,
    EncodeFailed,
    EncodeLog,
    EncodeProgress,
    EncodeRequest,
    EncodeSucceeded,
    EncodeTask,
    Encoder,
)
from export_service.env_config import ServiceSettings
from export_service.exceptions import EncoderError
from export_service.models.dto import ExportRequest
from export_service.services.config_service import ConfigService
from export_service.services.export_service import ExportService

SOURCE_HASH = "a" * 64


class FakeEncoder(Encoder):
    """Encoder double driven by hand from tests.

    ``start`` records the request and returns a task; the test then pushes
    progress and outcome events with the helper methods.
    """

    def __init__(self):
        self.requests: List[EncodeRequest] = []
        self.tasks: Dict[str, EncodeTask] = {}
        self.handlers = {}
        self.killed: List[str] = []
        self.fail_start = False

    def start(self, request, on_event):
        if self.fail_start:
            raise EncoderError("ffmpeg not installed")
        self.requests.append(request)
        task = EncodeTask(
            request.job_id,
            command=["ffmpeg", "-i", str(request.input_path), str(request.output_path)],
            terminate=lambda: self.killed.append(request.job_id),
        )
        self.tasks[request.job_id] = task
        self.handlers[request.job_id] = on_event
        return task

    def request_for(self, job_id: str) -> EncodeRequest:
        for request in self.requests:
            if request.job_id == job_id:
                return request
        raise KeyError(job_id)

    def progress(self, job_id: str, percent=None):
        self.handlers[job_id](EncodeProgress(percent))

    def log(self, job_id: str, line: str):
        self.handlers[job_id](EncodeLog(line))

    def succeed(self, job_id: str, content: bytes = b"rendered video"):
        output_path = self.request_for(job_id).output_path
        if content:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(content)
        self._finish(job_id, EncodeSucceeded(output_path))

    def fail(self, job_id: str, message: str = "ffmpeg exited with code 1: boom", code: str = "ffmpeg_error"):
        self._finish(job_id, EncodeFailed(code, message))

    def abandon(self, job_id: str):
        self._finish(job_id, EncodeAbandoned("cancelled"))

    def _finish(self, job_id, outcome):
        self.tasks[job_id].resolve(outcome)
        self.handlers[job_id](outcome)


class FakeClock:
    """Controllable clock for TTL tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def settings(tmp_path):
    """Settings with media and output dirs under tmp_path."""
    s = ServiceSettings(
        media_root=tmp_path / "media",
        output_dir=tmp_path / "renders",
        max_concurrent_renders=2,
        max_queued_exports=2,
        job_ttl_seconds=3600,
    )
    s.ensure_directories()
    return s


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_service():
    return ConfigService()


@pytest.fixture
def export_service(settings, fake_encoder, config_service, clock):
    return ExportService(settings, fake_encoder, config_service=config_service, clock=clock)


@pytest.fixture
def stored_source(settings):
    """A non-empty source file stored under its hash."""
    path = settings.media_root / f"{SOURCE_HASH}.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return path


def make_project(clips=None, sources=None, fps=24, width=1920, height=1080):
    """Project document in the client's camelCase shape."""
    if sources is None:
        sources = [{"id": "src1", "hash": SOURCE_HASH, "originalName": "clip.mp4", "durationFrames": 480}]
    if clips is None:
        clips = [{"id": "c1", "sourceId": "src1", "startFrame": 0, "endFrame": 239, "timelineStartFrame": 0}]
    return {
        "sources": sources,
        "timeline": {"fps": fps, "clips": clips},
        "settings": {"width": width, "height": height, "fps": fps},
    }


def make_settings(**overrides):
    settings = {"container": "mp4", "videoCodec": "h264", "source": {"kind": "timeline"}}
    settings.update(overrides)
    return settings


def make_request(project=None, **settings_overrides) -> ExportRequest:
    return ExportRequest.model_validate({
        "project": project if project is not None else make_project(),
        "settings": make_settings(**settings_overrides),
        "clientVersion": "test-1.0",
    })
