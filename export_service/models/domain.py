"""Domain entities - internal representation (framework-agnostic)."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from export_service.exceptions import InvalidTransitionError

DEFAULT_DEBUG_TRAIL_SIZE = 50


def utcnow() -> datetime:
    """Timezone-aware current time used for job timestamps."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Export job status enumeration."""
    QUEUED = "queued"
    RENDERING = "rendering"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: frozenset({JobStatus.RENDERING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RENDERING: frozenset({JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class RenderParams:
    """Concrete encode target derived from project + settings."""
    width: int
    height: int
    fps: float
    duration_seconds: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "durationSeconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class DebugEntry:
    """One timestamped diagnostic line in a job's debug trail."""
    at: datetime
    message: str
    data: Optional[Dict[str, Any]] = None


class DebugTrail:
    """Bounded ring buffer of diagnostic entries, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_DEBUG_TRAIL_SIZE):
        self.capacity = max(1, capacity)
        self._entries: Deque[DebugEntry] = deque(maxlen=self.capacity)

    def add(self, message: str, data: Optional[Dict[str, Any]] = None) -> DebugEntry:
        entry = DebugEntry(at=utcnow(), message=message, data=data)
        self._entries.append(entry)
        return entry

    def entries(self) -> List[DebugEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class ExportJob:
    """Export job domain entity.

    Status changes go through ``transition`` so a job can never leave a
    terminal state or step backwards. Progress changes go through
    ``record_progress`` so the value never decreases.
    """
    id: str
    container: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    client_version: Optional[str] = None
    output_path: Optional[Path] = None
    download_path: Optional[Path] = None
    debug: DebugTrail = field(default_factory=DebugTrail)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: JobStatus, now: Optional[datetime] = None) -> None:
        """Move to ``status``, enforcing the lifecycle ordering."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, status.value)
        self.status = status
        if status.is_terminal:
            self.finished_at = now or utcnow()

    def record_progress(self, percent: Optional[float]) -> int:
        """Apply an encoder progress report and return the stored value.

        Reports below the current value are ignored. Without a percentage the
        value creeps up by one point, never past 99.
        """
        if percent is None:
            candidate = min(99, self.progress + 1)
        else:
            candidate = int(round(min(100.0, max(0.0, percent))))
        if candidate > self.progress:
            self.progress = candidate
        return self.progress

    def terminal_age_seconds(self, now: datetime) -> Optional[float]:
        """Seconds since the job became terminal, or None while still active."""
        if not self.is_terminal:
            return None
        reference = self.finished_at or self.created_at
        return (now - reference).total_seconds()
