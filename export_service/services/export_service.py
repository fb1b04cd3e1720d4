"""Export service - job lifecycle, admission control and scheduling."""

import functools
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional, Union

from export_service.env_config import ServiceSettings
from export_service.encoder import (
    FFMPEG_FAILURE_CODE,
    EncodeAbandoned,
    EncodeEvent,
    EncodeFailed,
    EncodeLog,
    EncodeProgress,
    EncodeRequest,
    EncodeSucceeded,
    EncodeTask,
    Encoder,
    RateControlSpec,
    TimeWindow,
)
from export_service.exceptions import EncoderError, ErrorCode, JobNotFoundError
from export_service.models.domain import DebugTrail, ExportJob, JobStatus, RenderParams, utcnow
from export_service.models.dto import (
    DebugEntryDTO,
    ExportProject,
    ExportRequest,
    ExportStatusDTO,
    ProjectSource,
)
from export_service.repositories.job_repository import JobRepository
from export_service.services.config_service import ConfigService, get_config_service
from export_service.services.media_resolver import (
    check_timeline_selector,
    preferred_container,
    resolve_media_path,
    resolve_primary_source,
    timeline_source_ids,
)
from export_service.services.render_params import (
    approx_uncompressed_gb,
    derive_render_params,
    explicit_frame_range,
    project_fps,
    project_geometry,
)
from export_service.utils.media import has_content, remove_file

logger = logging.getLogger(__name__)

_KNOWN_CODES = {code.value for code in ErrorCode}


@dataclass
class QueuedExport:
    """A submission waiting for a render slot."""
    job_id: str
    request: ExportRequest


@dataclass
class ActiveRender:
    """A render slot, reserved before launch and filled with its encode task."""
    output_path: Path
    task: Optional[EncodeTask] = None


@dataclass(frozen=True)
class DownloadInfo:
    path: Path
    media_type: str
    filename: str


class ExportService:
    """
    Service for export job orchestration.

    One instance per process owns the job repository, the FIFO queue and the
    table of in-flight encodes. Every state change, including the ones driven
    by encoder callbacks, happens under a single lock.

    Responsibilities:
    - Admission control (concurrency limit, bounded FIFO queue)
    - Start pipeline: timeline check, media resolution, size limits, encode
    - Apply encoder events to job records
    - Cancel, discard and prune jobs

    Does NOT:
    - Handle HTTP requests (that's API layer)
    - Run ffmpeg directly (that's the encoder adapter)
    """

    def __init__(
        self,
        settings: ServiceSettings,
        encoder: Encoder,
        job_repo: Optional[JobRepository] = None,
        config_service: Optional[ConfigService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.encoder = encoder
        self.job_repo = job_repo or JobRepository()
        self.config_service = config_service or get_config_service()
        self._clock = clock
        self._lock = threading.RLock()
        self._queue: Deque[QueuedExport] = deque()
        self._active: Dict[str, ActiveRender] = {}

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def submit(self, request: ExportRequest) -> ExportJob:
        """
        Register an export and admit it.

        Admission rules:
        - Start now if a render slot is free and nobody is waiting
        - Otherwise wait in the FIFO queue if it has room
        - Otherwise fail immediately with over_capacity

        Never blocks on the render itself.
        """
        with self._lock:
            job = ExportJob(
                id=self._new_job_id(),
                container=request.settings.container,
                client_version=request.client_version,
                created_at=self._clock(),
                debug=DebugTrail(self.settings.debug_trail_size),
            )
            self.job_repo.save(job)
            job.debug.add("submitted", {"clientVersion": request.client_version, "kind": request.settings.source.kind})

            limit = self.settings.max_concurrent_renders
            if len(self._active) < limit and not self._queue:
                self._start(job, request)
            elif len(self._queue) < self.settings.max_queued_exports:
                self._queue.append(QueuedExport(job.id, request))
                job.debug.add("queued", {"position": len(self._queue)})
                logger.info(f"Export job {job.id} queued at position {len(self._queue)}")
            else:
                self._fail(
                    job,
                    ErrorCode.OVER_CAPACITY,
                    f"{limit} renders active and {len(self._queue)} queued",
                )

            self._drain_queue()
            return job

    def get_job(self, job_id: str) -> Optional[ExportJob]:
        return self.job_repo.get(job_id)

    def get_status(self, job_id: str, include_debug: Optional[bool] = None) -> ExportStatusDTO:
        """Current status of a job for polling clients."""
        if include_debug is None:
            include_debug = self.settings.debug
        with self._lock:
            job = self.job_repo.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return self._to_dto(job, include_debug)

    def get_download(self, job_id: str) -> DownloadInfo:
        """File to serve for a completed job."""
        with self._lock:
            job = self.job_repo.get(job_id)
            if job is None or job.status != JobStatus.COMPLETE or job.download_path is None:
                raise JobNotFoundError(job_id)
            path = job.download_path
            container = job.container

        if not path.is_file():
            raise JobNotFoundError(job_id)

        return DownloadInfo(
            path=path,
            media_type=self.config_service.get_mime_type(container),
            filename=self.config_service.get_download_filename(job_id, container),
        )

    def cancel(self, job_id: str) -> ExportJob:
        """
        Cancel a queued or rendering job.

        A queued job leaves the queue at once. A rendering job is marked
        cancelled and its encoder is force-terminated; the render slot is
        released when the encoder reports back.
        """
        with self._lock:
            job = self.job_repo.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.is_terminal:
                return job

            if job.status == JobStatus.QUEUED:
                self._remove_from_queue(job_id)
                job.transition(JobStatus.CANCELLED, self._clock())
                job.debug.add("cancelled while queued")
                logger.info(f"Export job {job_id} cancelled while queued")
                return job

            job.transition(JobStatus.CANCELLED, self._clock())
            job.debug.add("cancelled while rendering")
            active = self._active.get(job_id)
            if active is not None and active.task is not None:
                active.task.cancel()
            logger.info(f"Export job {job_id} cancelled while rendering")
            return job

    def discard(self, job_id: str) -> bool:
        """
        Remove a job record.

        An in-flight encode notices the missing record on its next progress
        report and is terminated then.
        """
        with self._lock:
            job = self.job_repo.get(job_id)
            if job is None:
                return False
            self._remove_from_queue(job_id)
            self.job_repo.delete(job_id)
            if job.is_terminal:
                remove_file(job.download_path)
                remove_file(job.output_path)
            logger.info(f"Export job {job_id} discarded ({job.status.value})")
            return True

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete terminal jobs older than the TTL, files first.

        Queued and rendering jobs are never touched, however old.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            expired = self.job_repo.list_expired(self.settings.job_ttl_seconds, now)
            for job in expired:
                remove_file(job.download_path)
                remove_file(job.output_path)
                self.job_repo.delete(job.id)

        if expired:
            logger.info(f"Pruned {len(expired)} expired export job(s)")
        return len(expired)

    def shutdown(self) -> None:
        """Cancel queued jobs and terminate every in-flight encode."""
        with self._lock:
            unfinished = self.job_repo.get_active_jobs()
            if unfinished:
                logger.info(f"Shutting down with {len(unfinished)} unfinished export job(s)")
            self._queue.clear()
            for job in unfinished:
                if job.status == JobStatus.QUEUED:
                    job.transition(JobStatus.CANCELLED, self._clock())
                    job.debug.add("cancelled on shutdown")
            active = [(job_id, render.task) for job_id, render in self._active.items() if render.task is not None]

        for job_id, task in active:
            logger.info(f"Terminating encode for job {job_id} on shutdown")
            task.cancel()

    # -- scheduling -----------------------------------------------------

    def _drain_queue(self) -> None:
        """Start queued jobs in FIFO order while render slots are free."""
        while self._queue and len(self._active) < self.settings.max_concurrent_renders:
            entry = self._queue.popleft()
            job = self.job_repo.get(entry.job_id)
            if job is None or job.status != JobStatus.QUEUED:
                continue
            self._start(job, entry.request)

    def _start(self, job: ExportJob, request: ExportRequest) -> None:
        """Run the start pipeline for one job; failures short-circuit."""
        try:
            self._run_start_pipeline(job, request)
        except Exception as e:
            logger.exception(f"Unexpected error starting export job {job.id}")
            render = self._active.get(job.id)
            if render is not None and render.task is None:
                del self._active[job.id]
            if not job.is_terminal:
                self._fail(job, ErrorCode.INTERNAL_ERROR, str(e))

    def _run_start_pipeline(self, job: ExportJob, request: ExportRequest) -> None:
        project = request.project
        settings = request.settings
        selector = settings.source
        limits = self.settings.limits

        code = check_timeline_selector(project, selector)
        if code is not None:
            self._fail(job, code, "whole-timeline export spans more than one source", {
                "sourceIds": timeline_source_ids(project),
            })
            return

        source = resolve_primary_source(project, selector)
        input_path = None
        if source is not None:
            hint = preferred_container(source, settings.container)
            input_path = resolve_media_path(self.settings.media_root, source.hash, source.original_name, hint)
            job.debug.add("media resolution", {
                "sourceId": source.id,
                "hash": source.hash,
                "originalName": source.original_name,
                "container": hint,
                "path": str(input_path) if input_path else None,
            })
            if input_path is None:
                self._fail(job, ErrorCode.MEDIA_MISSING, f"no stored media for source {source.id}")
                return
        elif self.settings.allow_placeholder_render:
            job.debug.add("no primary source, rendering placeholder", {"kind": selector.kind})
        else:
            self._fail(job, ErrorCode.MEDIA_MISSING, f"no primary source for {selector.kind} selector")
            return

        params = derive_render_params(project, settings, limits)
        job.debug.add("render params", {
            **params.as_dict(),
            "approxUncompressedGB": round(approx_uncompressed_gb(params), 3),
        })
        for warning in limits.soft_warnings(params):
            logger.warning(f"Export job {job.id}: {warning}")
            job.debug.add(warning)
        if limits.exceeds_extreme(params):
            self._fail(job, ErrorCode.JOB_TOO_LARGE, f"{params.width}x{params.height} for {params.duration_seconds:.1f}s")
            return

        encode_request = self._build_encode_request(job, request, params, source, input_path)
        remove_file(encode_request.output_path)
        job.output_path = encode_request.output_path
        job.transition(JobStatus.RENDERING)

        # Held until the terminal event, which may arrive before start() returns
        self._active[job.id] = ActiveRender(output_path=encode_request.output_path)
        on_event = functools.partial(self._on_encoder_event, job.id)
        try:
            task = self.encoder.start(encode_request, on_event)
        except EncoderError as e:
            self._active.pop(job.id, None)
            self._fail(job, e.code, e.message)
            return

        render = self._active.get(job.id)
        if render is not None:
            render.task = task

        job.debug.add("encoder started", {
            "command": " ".join(task.command),
            "placeholder": encode_request.placeholder,
        })
        logger.info(
            f"Export job {job.id} rendering {params.width}x{params.height}@{params.fps:g} "
            f"for {params.duration_seconds:.2f}s ({'placeholder' if encode_request.placeholder else input_path})"
        )

    def _build_encode_request(
        self,
        job: ExportJob,
        request: ExportRequest,
        params: RenderParams,
        source: Optional[ProjectSource],
        input_path: Optional[Path],
    ) -> EncodeRequest:
        project = request.project
        settings = request.settings
        config = self.config_service

        container = settings.container
        codec = config.get_video_codec(settings.video_codec, container)
        pixel_format = settings.pixel_format or codec.get("pixelFormat") or config.get_default_pixel_format()
        audio_encoder = config.get_audio_encoder(settings.audio_codec) if settings.include_audio else None

        rate_control = None
        if settings.rate_control is not None:
            rate_control = RateControlSpec(settings.rate_control.mode, settings.rate_control.value)

        window = None
        if input_path is not None:
            window = self._time_window(project, request, params)

        native_width, native_height = project_geometry(project)
        scale = settings.output_resolution == "custom" or (params.width, params.height) != (native_width, native_height)

        if window is not None:
            expected_duration = window.duration_seconds
        elif input_path is None or (source is not None and source.duration_frames):
            expected_duration = params.duration_seconds
        else:
            expected_duration = None

        return EncodeRequest(
            job_id=job.id,
            output_path=self.settings.output_dir / f"{job.id}.{container}",
            params=params,
            container=container,
            video_encoder=codec.get("encoder", "libx264"),
            pixel_format=pixel_format,
            audio_encoder=audio_encoder,
            input_path=input_path,
            time_window=window,
            scale=scale,
            rate_control=rate_control,
            codec_profile=codec.get("profile"),
            crf_needs_zero_bitrate=bool(codec.get("crfNeedsZeroBitrate", False)),
            supports_rate_control=bool(codec.get("rateControl", True)),
            faststart=bool(config.get_container(container).get("faststart", False)),
            expected_duration_seconds=expected_duration,
        )

    @staticmethod
    def _time_window(project: ExportProject, request: ExportRequest, params: RenderParams) -> Optional[TimeWindow]:
        """Section of the source file covered by the selector, in source time."""
        selector = request.settings.source
        fps = project_fps(project)

        if selector.kind == "source":
            return None

        if selector.kind == "clip":
            clip = project.find_clip(selector.clip_id)
            if clip is None:
                return None
            start = max(0.0, (clip.start_frame or 0.0))
            end = clip.end_frame if clip.end_frame is not None else start
            frames = max(1.0, end - start + 1)
            return TimeWindow(start / fps, frames / fps)

        frame_range = explicit_frame_range(selector)
        if frame_range is not None:
            in_frame, out_frame = frame_range
            return TimeWindow(max(0.0, in_frame) / fps, (out_frame - in_frame + 1) / fps)

        starts = [clip.start_frame or 0.0 for clip in project.clips]
        if not starts:
            return None
        return TimeWindow(max(0.0, min(starts)) / fps, params.duration_seconds * params.fps / fps)

    # -- encoder events -------------------------------------------------

    def _on_encoder_event(self, job_id: str, event: EncodeEvent) -> None:
        """Apply one encoder event. Called from encoder threads."""
        with self._lock:
            job = self.job_repo.get(job_id)

            if isinstance(event, EncodeProgress):
                if job is None:
                    active = self._active.get(job_id)
                    if active is not None and active.task is not None and not active.task.cancelled:
                        logger.info(f"Export job {job_id} record is gone, terminating its encode")
                        active.task.cancel()
                    return
                if job.status == JobStatus.RENDERING:
                    job.record_progress(event.percent)
                return

            if isinstance(event, EncodeLog):
                if job is not None:
                    job.debug.add(f"encoder: {event.line}")
                return

            active = self._active.pop(job_id, None)
            output_path = active.output_path if active else (job.output_path if job else None)
            try:
                self._apply_outcome(job_id, job, event, output_path)
            finally:
                self._drain_queue()

    def _apply_outcome(
        self,
        job_id: str,
        job: Optional[ExportJob],
        outcome: Union[EncodeSucceeded, EncodeFailed, EncodeAbandoned],
        output_path: Optional[Path],
    ) -> None:
        still_rendering = job is not None and job.status == JobStatus.RENDERING

        if isinstance(outcome, EncodeSucceeded):
            if not still_rendering:
                remove_file(output_path)
                return
            path = outcome.output_path
            if has_content(path):
                job.record_progress(100)
                job.download_path = path
                job.transition(JobStatus.COMPLETE, self._clock())
                job.debug.add("complete", {"path": str(path)})
                logger.info(f"Export job {job_id} complete: {path}")
            else:
                remove_file(path)
                self._fail(job, ErrorCode.OUTPUT_MISSING, f"encoder reported success but {path} is missing or empty")
            return

        remove_file(output_path)

        if isinstance(outcome, EncodeFailed):
            if still_rendering:
                self._fail(job, self._error_for(outcome), outcome.message, {"code": outcome.code})
            return

        if still_rendering:
            job.transition(JobStatus.CANCELLED, self._clock())
            job.debug.add(f"encode abandoned: {outcome.reason}")
        logger.info(f"Encode for export job {job_id} abandoned ({outcome.reason})")

    @staticmethod
    def _error_for(outcome: EncodeFailed) -> str:
        """Known codes are kept; ffmpeg failures keep the encoder's message."""
        if outcome.code == FFMPEG_FAILURE_CODE or outcome.code not in _KNOWN_CODES:
            return outcome.message
        return outcome.code

    # -- helpers --------------------------------------------------------

    def _fail(
        self,
        job: ExportJob,
        code: Union[ErrorCode, str],
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        job.error = code.value if isinstance(code, ErrorCode) else code
        job.transition(JobStatus.FAILED, self._clock())
        details = dict(data or {})
        if message:
            details["message"] = message
        job.debug.add(f"failed: {job.error}", details or None)
        logger.warning(f"Export job {job.id} failed: {job.error}" + (f" ({message})" if message else ""))

    def _remove_from_queue(self, job_id: str) -> None:
        self._queue = deque(entry for entry in self._queue if entry.job_id != job_id)

    def _new_job_id(self) -> str:
        while True:
            job_id = str(uuid.uuid4())
            if not self.job_repo.exists(job_id):
                return job_id

    @staticmethod
    def _to_dto(job: ExportJob, include_debug: bool) -> ExportStatusDTO:
        """Convert domain entity to DTO."""
        debug = None
        if include_debug:
            debug = [
                DebugEntryDTO(at=entry.at, message=entry.message, data=entry.data)
                for entry in job.debug.entries()
            ]
        return ExportStatusDTO(
            id=job.id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            download_url=f"/exports/{job.id}/download" if job.status == JobStatus.COMPLETE else None,
            debug=debug,
        )
