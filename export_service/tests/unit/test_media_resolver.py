"""Unit tests for media path resolution."""

from export_service.exceptions import ErrorCode
from export_service.models.dto import ExportProject, SourceSelector
from export_service.services.media_resolver import (
    check_timeline_selector,
    describe_candidates,
    media_candidates,
    preferred_container,
    resolve_media_path,
    resolve_primary_source,
    safe_basename,
)

HASH = "abc123"


class TestSafeBasename:

    def test_strips_directories(self):
        assert safe_basename("../../etc/passwd") == "passwd"
        assert safe_basename("C:\\Users\\me\\clip one.mp4") == "clip_one.mp4"

    def test_replaces_unsafe_characters(self):
        assert safe_basename("my clip (final).mov") == "my_clip__final_.mov"

    def test_rejects_empty_names(self):
        assert safe_basename(None) is None
        assert safe_basename("") is None
        assert safe_basename("..") is None


class TestCandidates:
    """Ordering of candidate paths."""

    def test_order(self, tmp_path):
        candidates = media_candidates(tmp_path, HASH, "holiday.mov", "mov")
        names = [p.name for p in candidates]

        assert names == [
            f"{HASH}.mov",
            f"{HASH}.mp4",
            f"{HASH}.mkv",
            f"{HASH}.webm",
            HASH,
            "holiday.mov",
        ]

    def test_invalid_hash_skips_hash_candidates(self, tmp_path):
        candidates = media_candidates(tmp_path, "../evil", "clip.mp4", "mp4")
        assert [p.name for p in candidates] == ["clip.mp4"]

    def test_candidates_stay_inside_media_root(self, tmp_path):
        for candidate in media_candidates(tmp_path, HASH, "../../outside.mp4", "mp4"):
            assert candidate.parent == tmp_path


class TestResolveMediaPath:

    def test_preferred_container_wins(self, tmp_path):
        (tmp_path / f"{HASH}.mov").write_bytes(b"mov data")
        (tmp_path / f"{HASH}.mp4").write_bytes(b"mp4 data")

        assert resolve_media_path(tmp_path, HASH, None, "mp4") == tmp_path / f"{HASH}.mp4"
        assert resolve_media_path(tmp_path, HASH, None, "mov") == tmp_path / f"{HASH}.mov"

    def test_empty_files_are_skipped(self, tmp_path):
        (tmp_path / f"{HASH}.mp4").write_bytes(b"")
        (tmp_path / HASH).write_bytes(b"raw")

        assert resolve_media_path(tmp_path, HASH, None, "mp4") == tmp_path / HASH

    def test_falls_back_to_original_name(self, tmp_path):
        (tmp_path / "clip.mp4").write_bytes(b"data")
        assert resolve_media_path(tmp_path, HASH, "clip.mp4", "mp4") == tmp_path / "clip.mp4"

    def test_nothing_found(self, tmp_path):
        assert resolve_media_path(tmp_path, HASH, "clip.mp4", "mp4") is None

    def test_describe_candidates(self, tmp_path):
        (tmp_path / f"{HASH}.mp4").write_bytes(b"1234")
        report = describe_candidates(tmp_path, HASH, None, "mp4")

        assert report[0]["exists"] is True
        assert report[0]["size"] == 4
        assert report[1]["exists"] is False


class TestPrimarySource:
    """Picking the single source an export reads from."""

    def _project(self, clips):
        return ExportProject.model_validate({
            "sources": [
                {"id": "s1", "hash": "h1", "originalName": "one.MOV"},
                {"id": "s2", "hash": "h2"},
            ],
            "timeline": {"fps": 24, "clips": clips},
        })

    def test_single_source_timeline(self):
        project = self._project([
            {"id": "c1", "sourceId": "s1"},
            {"id": "c2", "sourceId": "s1"},
        ])
        selector = SourceSelector()

        assert check_timeline_selector(project, selector) is None
        assert resolve_primary_source(project, selector).id == "s1"

    def test_multi_source_timeline_is_unsupported(self):
        project = self._project([
            {"id": "c1", "sourceId": "s1"},
            {"id": "c2", "sourceId": "s2"},
        ])
        selector = SourceSelector()

        assert check_timeline_selector(project, selector) == ErrorCode.UNSUPPORTED_TIMELINE
        assert resolve_primary_source(project, selector) is None

    def test_clip_without_source_on_timeline(self):
        project = self._project([
            {"id": "c1", "sourceId": "s1"},
            {"id": "c2"},
        ])
        assert resolve_primary_source(project, SourceSelector()) is None

    def test_clip_selector(self):
        project = self._project([{"id": "c1", "sourceId": "s2"}])
        selector = SourceSelector(kind="clip", clip_id="c1")

        assert resolve_primary_source(project, selector).id == "s2"

    def test_multi_source_ok_for_clip_selector(self):
        project = self._project([
            {"id": "c1", "sourceId": "s1"},
            {"id": "c2", "sourceId": "s2"},
        ])
        selector = SourceSelector(kind="clip", clip_id="c2")

        assert check_timeline_selector(project, selector) is None

    def test_source_selector(self):
        project = self._project([])
        selector = SourceSelector(kind="source", source_id="s1")

        assert resolve_primary_source(project, selector).id == "s1"

    def test_preferred_container(self):
        project = self._project([])

        assert preferred_container(project.find_source("s1"), "mp4") == "mov"
        assert preferred_container(project.find_source("s2"), "webm") == "webm"
