"""ffmpeg encoder adapter.

Each encode runs as an ffmpeg subprocess with a daemon thread reading its
``-progress pipe:1`` output. The thread reports back through a callback with
progress, diagnostic, and terminal events; the coordinator never waits on
the process itself. Every encode is represented by an ``EncodeTask``
carrying a cancellation token and a future for the terminal outcome.
"""

import logging
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from export_service.exceptions import EncoderError, ErrorCode
from export_service.models.domain import RenderParams

logger = logging.getLogger(__name__)

FFMPEG_FAILURE_CODE = "ffmpeg_error"

_BITRATE_PATTERN = re.compile(r"^\d+(\.\d+)?[kKmM]?$")
_PROGRESS_LINE = re.compile(r"^([a-z0-9_]+)=(.*)$")
_PROGRESS_KEYS = {
    "frame", "fps", "bitrate", "total_size", "out_time_us", "out_time_ms",
    "out_time", "dup_frames", "drop_frames", "speed", "progress",
}


@dataclass(frozen=True)
class TimeWindow:
    """Section of the input to encode, in seconds."""
    start_seconds: float
    duration_seconds: float


@dataclass(frozen=True)
class RateControlSpec:
    mode: str
    value: Union[float, str, None]


@dataclass(frozen=True)
class EncodeRequest:
    """Everything the encoder needs for one job.

    ``input_path`` of None selects the synthetic placeholder input (solid
    black frames of the requested geometry, rate and duration).
    """
    job_id: str
    output_path: Path
    params: RenderParams
    container: str
    video_encoder: str
    pixel_format: str
    audio_encoder: Optional[str] = None
    input_path: Optional[Path] = None
    time_window: Optional[TimeWindow] = None
    scale: bool = False
    rate_control: Optional[RateControlSpec] = None
    codec_profile: Optional[str] = None
    crf_needs_zero_bitrate: bool = False
    supports_rate_control: bool = True
    faststart: bool = False
    expected_duration_seconds: Optional[float] = None

    @property
    def placeholder(self) -> bool:
        return self.input_path is None


@dataclass(frozen=True)
class EncodeProgress:
    """Progress report; ``percent`` is None when ffmpeg gave no usable time."""
    percent: Optional[float]


@dataclass(frozen=True)
class EncodeLog:
    """A diagnostic line printed by the encoder."""
    line: str


@dataclass(frozen=True)
class EncodeSucceeded:
    output_path: Path


@dataclass(frozen=True)
class EncodeFailed:
    code: str
    message: str


@dataclass(frozen=True)
class EncodeAbandoned:
    """The encode was force-terminated on request; neither success nor failure."""
    reason: str


EncodeOutcome = Union[EncodeSucceeded, EncodeFailed, EncodeAbandoned]
EncodeEvent = Union[EncodeProgress, EncodeLog, EncodeSucceeded, EncodeFailed, EncodeAbandoned]
EventCallback = Callable[[EncodeEvent], None]


def is_terminal_event(event: EncodeEvent) -> bool:
    return isinstance(event, (EncodeSucceeded, EncodeFailed, EncodeAbandoned))


class EncodeTask:
    """Handle on one in-flight encode."""

    def __init__(
        self,
        job_id: str,
        command: Optional[List[str]] = None,
        terminate: Optional[Callable[[], None]] = None,
    ):
        self.job_id = job_id
        self.command = command or []
        self.result: "Future[EncodeOutcome]" = Future()
        self._terminate = terminate
        self._cancel_event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self.result.done()

    def cancel(self) -> bool:
        """Force-terminate the encode. Returns False if it already finished."""
        if self.result.done():
            return False
        self._cancel_event.set()
        if self._terminate is not None:
            try:
                self._terminate()
            except OSError as e:
                logger.debug(f"Terminate for job {self.job_id} failed: {e}")
        return True

    def resolve(self, outcome: EncodeOutcome) -> None:
        if not self.result.done():
            self.result.set_result(outcome)


class Encoder(ABC):
    """Launches encodes and reports their events."""

    @abstractmethod
    def start(self, request: EncodeRequest, on_event: EventCallback) -> EncodeTask:
        """Begin encoding in the background.

        Raises:
            EncoderError: if the encode could not be launched at all
        """


def format_number(value: float) -> str:
    """Compact decimal text for ffmpeg arguments (24.0 -> '24')."""
    return f"{value:.6g}"


def rate_control_args(request: EncodeRequest) -> List[str]:
    """ffmpeg arguments for CRF or bitrate rate control."""
    rate = request.rate_control
    if rate is None or rate.value is None or not request.supports_rate_control:
        return []

    if rate.mode == "crf":
        try:
            crf = float(rate.value)
        except (TypeError, ValueError):
            return []
        args = ["-crf", format_number(crf)]
        if request.crf_needs_zero_bitrate:
            args += ["-b:v", "0"]
        return args

    if rate.mode == "bitrate":
        if isinstance(rate.value, (int, float)):
            if rate.value <= 0:
                return []
            return ["-b:v", f"{int(rate.value)}k"]
        text = str(rate.value).strip()
        if _BITRATE_PATTERN.match(text):
            return ["-b:v", text]

    return []


def parse_progress_line(line: str) -> Optional[tuple]:
    """Split a ``-progress`` output line into (key, value), or None."""
    match = _PROGRESS_LINE.match(line.strip())
    if not match:
        return None
    key, value = match.groups()
    if key in _PROGRESS_KEYS or key.startswith("stream_"):
        return key, value.strip()
    return None


def _parse_clock(value: str) -> Optional[float]:
    """Parse ``HH:MM:SS.micro`` into seconds."""
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


class ProgressTracker:
    """Accumulates ``-progress`` key/value blocks into percentages."""

    def __init__(self, expected_duration_seconds: Optional[float]):
        self.expected_duration_seconds = expected_duration_seconds
        self.out_time_seconds: Optional[float] = None

    def feed(self, key: str, value: str) -> Optional[EncodeProgress]:
        """Consume one key; returns an event when a block is complete."""
        if key in ("out_time_us", "out_time_ms"):
            # ffmpeg reports microseconds under both keys
            try:
                micros = int(value)
            except ValueError:
                return None
            if micros >= 0:
                self.out_time_seconds = micros / 1_000_000
        elif key == "out_time" and self.out_time_seconds is None:
            seconds = _parse_clock(value)
            if seconds is not None and seconds >= 0:
                self.out_time_seconds = seconds
        elif key == "progress":
            return EncodeProgress(self.percent())
        return None

    def percent(self) -> Optional[float]:
        duration = self.expected_duration_seconds
        if not duration or duration <= 0 or self.out_time_seconds is None:
            return None
        return min(100.0, self.out_time_seconds / duration * 100.0)


def _emit(on_event: EventCallback, event: EncodeEvent, job_id: str) -> None:
    try:
        on_event(event)
    except Exception:
        logger.exception(f"Encoder event handler failed for job {job_id}")


class FfmpegEncoder(Encoder):
    """Runs ffmpeg out-of-process, one subprocess per job."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_seconds: Optional[float] = None):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    def build_command(self, request: EncodeRequest) -> List[str]:
        params = request.params
        cmd = [
            self.ffmpeg_path,
            "-hide_banner", "-nostdin", "-y",
            "-loglevel", "error", "-nostats",
            "-progress", "pipe:1",
        ]

        if request.placeholder:
            source = (
                f"color=c=black:s={params.width}x{params.height}"
                f":r={format_number(params.fps)}:d={params.duration_seconds:.3f}"
            )
            cmd += ["-f", "lavfi", "-i", source]
        else:
            window = request.time_window
            if window is not None and window.start_seconds > 0:
                cmd += ["-ss", f"{window.start_seconds:.3f}"]
            cmd += ["-i", str(request.input_path)]
            if window is not None:
                cmd += ["-t", f"{window.duration_seconds:.3f}"]
            if request.scale:
                cmd += ["-vf", f"scale={params.width}:{params.height}"]

        cmd += ["-r", format_number(params.fps)]
        cmd += ["-c:v", request.video_encoder]
        if request.codec_profile:
            cmd += ["-profile:v", request.codec_profile]
        cmd += ["-pix_fmt", request.pixel_format]
        cmd += rate_control_args(request)

        if request.audio_encoder and not request.placeholder:
            cmd += ["-c:a", request.audio_encoder]
        else:
            cmd.append("-an")

        if request.faststart:
            cmd += ["-movflags", "+faststart"]

        cmd.append(str(request.output_path))
        return cmd

    def start(self, request: EncodeRequest, on_event: EventCallback) -> EncodeTask:
        cmd = self.build_command(request)
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise EncoderError(f"Could not start {self.ffmpeg_path}: {e}")

        task = EncodeTask(request.job_id, command=cmd, terminate=process.kill)
        thread = threading.Thread(
            target=self._run,
            args=(task, process, request, on_event),
            name=f"encode-{request.job_id[:8]}",
            daemon=True,
        )
        thread.start()
        return task

    def _run(
        self,
        task: EncodeTask,
        process: subprocess.Popen,
        request: EncodeRequest,
        on_event: EventCallback,
    ) -> None:
        """Read encoder output until exit, then report the outcome."""
        timed_out = threading.Event()
        timer = None
        if self.timeout_seconds:
            def _on_timeout():
                timed_out.set()
                logger.warning(f"Encode for job {task.job_id} exceeded {self.timeout_seconds}s, killing")
                try:
                    process.kill()
                except OSError:
                    pass

            timer = threading.Timer(self.timeout_seconds, _on_timeout)
            timer.daemon = True
            timer.start()

        tracker = ProgressTracker(request.expected_duration_seconds)
        diagnostics = deque(maxlen=20)
        read_error = None

        try:
            for raw_line in iter(process.stdout.readline, ""):
                line = raw_line.strip()
                if not line:
                    continue

                parsed = parse_progress_line(line)
                if parsed is not None:
                    event = tracker.feed(*parsed)
                    if event is not None:
                        _emit(on_event, event, task.job_id)
                    continue

                diagnostics.append(line)
                _emit(on_event, EncodeLog(line[:500]), task.job_id)

            process.wait()
        except (OSError, ValueError) as e:
            read_error = e
            logger.error(f"Lost encoder output for job {task.job_id}: {e}")
            try:
                process.kill()
            except OSError:
                pass
            process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.stdout is not None:
                process.stdout.close()

        outcome = self._classify(task, request, process.returncode, timed_out.is_set(), diagnostics, read_error)
        task.resolve(outcome)
        _emit(on_event, outcome, task.job_id)

    def _classify(self, task, request, returncode, timed_out, diagnostics, read_error) -> EncodeOutcome:
        if task.cancelled:
            return EncodeAbandoned("cancelled")
        if timed_out:
            return EncodeFailed(
                ErrorCode.ENCODE_TIMEOUT.value,
                f"encode exceeded {format_number(self.timeout_seconds)}s wall-clock limit",
            )
        if read_error is not None:
            return EncodeFailed(FFMPEG_FAILURE_CODE, f"lost encoder output: {read_error}")
        if returncode == 0:
            return EncodeSucceeded(request.output_path)

        message = f"ffmpeg exited with code {returncode}"
        if diagnostics:
            message = f"{message}: {diagnostics[-1]}"
        return EncodeFailed(FFMPEG_FAILURE_CODE, message)
