"""Unit tests for job domain rules."""

from datetime import datetime, timedelta, timezone

import pytest

from export_service.exceptions import InvalidTransitionError
from export_service.models.domain import DebugTrail, ExportJob, JobStatus


def _job(**kwargs):
    return ExportJob(id="job-1", container="mp4", **kwargs)


class TestTransitions:
    """Lifecycle ordering of job status."""

    def test_happy_path(self):
        job = _job()
        job.transition(JobStatus.RENDERING)
        assert job.finished_at is None

        job.transition(JobStatus.COMPLETE)
        assert job.status == JobStatus.COMPLETE
        assert job.finished_at is not None

    def test_queued_can_fail_or_cancel(self):
        _job().transition(JobStatus.FAILED)
        _job().transition(JobStatus.CANCELLED)

    def test_cannot_skip_rendering(self):
        with pytest.raises(InvalidTransitionError):
            _job().transition(JobStatus.COMPLETE)

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        job = _job(status=JobStatus.RENDERING)
        job.transition(terminal)

        with pytest.raises(InvalidTransitionError):
            job.transition(JobStatus.RENDERING)

    def test_terminal_age(self):
        finished = datetime(2024, 1, 1, tzinfo=timezone.utc)
        job = _job()
        assert job.terminal_age_seconds(finished) is None

        job.transition(JobStatus.FAILED, now=finished)
        assert job.terminal_age_seconds(finished + timedelta(seconds=90)) == 90


class TestProgress:
    """Progress never goes backwards."""

    def test_reports_are_rounded_and_clamped(self):
        job = _job()
        assert job.record_progress(12.6) == 13
        assert job.record_progress(250) == 100

    def test_lower_reports_are_ignored(self):
        job = _job()
        job.record_progress(40)
        assert job.record_progress(10) == 40

    def test_unknown_progress_creeps_up_to_99(self):
        job = _job()
        job.progress = 98
        assert job.record_progress(None) == 99
        assert job.record_progress(None) == 99


class TestDebugTrail:

    def test_oldest_entries_evicted(self):
        trail = DebugTrail(capacity=3)
        for i in range(5):
            trail.add(f"entry {i}", {"i": i})

        entries = trail.entries()
        assert len(trail) == 3
        assert [e.message for e in entries] == ["entry 2", "entry 3", "entry 4"]
