"""Job repository - in-memory implementation."""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from export_service.models.domain import ExportJob, JobStatus
from export_service.repositories.base import Repository


class JobRepository(Repository[ExportJob]):
    """
    Repository for export job records.

    Current implementation: In-memory (dict)
    Rationale: Jobs are transient, there is no job index across restarts
    """

    def __init__(self):
        self._jobs: Dict[str, ExportJob] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[ExportJob]:
        """Get job by id."""
        with self._lock:
            return self._jobs.get(job_id)

    def list(self) -> List[ExportJob]:
        """List all jobs, oldest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda job: job.created_at)

    def save(self, job: ExportJob) -> ExportJob:
        """Save job to memory."""
        with self._lock:
            self._jobs[job.id] = job
        return job

    def delete(self, job_id: str) -> bool:
        """Delete job from memory."""
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def exists(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def get_active_jobs(self) -> List[ExportJob]:
        """Get all queued or rendering jobs."""
        return [
            job for job in self.list()
            if job.status in (JobStatus.QUEUED, JobStatus.RENDERING)
        ]

    def list_expired(self, ttl_seconds: float, now: datetime) -> List[ExportJob]:
        """Terminal jobs whose terminal age exceeds ``ttl_seconds``."""
        expired = []
        for job in self.list():
            age = job.terminal_age_seconds(now)
            if age is not None and age > ttl_seconds:
                expired.append(job)
        return expired
