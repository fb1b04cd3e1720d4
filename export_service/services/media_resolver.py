"""Media resolution for export jobs.

Input media lives in a content-addressed store written by the upload route
(``<hash><ext>``). The candidate order below is shared with that route and
with older stores that kept raw hashes or original filenames, so it must
only change together with the upload side:

1. ``<hash>.<preferred container>``
2. ``<hash>.<ext>`` for each of ``MEDIA_FALLBACK_EXTENSIONS``
3. ``<hash>`` with no extension
4. sanitized basename of the original filename
"""

import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional

from export_service.exceptions import ErrorCode
from export_service.models.dto import ExportProject, ProjectSource, SourceSelector
from export_service.utils.media import has_content

MEDIA_FALLBACK_EXTENSIONS = ("mp4", "mov", "mkv", "webm")

_HASH_PATTERN = re.compile(r"^[A-Za-z0-9]+$")
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def is_valid_hash(content_hash: Optional[str]) -> bool:
    """Content hashes are plain alphanumeric strings (hex sha256 in practice)."""
    return bool(content_hash) and _HASH_PATTERN.match(content_hash) is not None


def safe_basename(name: Optional[str]) -> Optional[str]:
    """Strip directories and replace anything outside ``[A-Za-z0-9_.-]``.

    Returns None for names that reduce to nothing usable ("", ".", "..").
    """
    if not name:
        return None
    base = PureWindowsPath(PurePosixPath(name).name).name
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base)
    if cleaned.strip(".") == "":
        return None
    return cleaned


def _normalize_extension(ext: Optional[str]) -> Optional[str]:
    if not ext:
        return None
    ext = ext.lower().lstrip(".")
    if not ext or _UNSAFE_NAME_CHARS.search(ext) or "." in ext:
        return None
    return ext


def preferred_container(source: Optional[ProjectSource], fallback: Optional[str] = None) -> Optional[str]:
    """Container hint for a source: its original extension, else ``fallback``."""
    if source is not None:
        name = safe_basename(source.original_name)
        if name:
            ext = _normalize_extension(Path(name).suffix)
            if ext:
                return ext
    return _normalize_extension(fallback)


def media_candidates(
    media_root: Path,
    content_hash: Optional[str],
    original_name: Optional[str] = None,
    container: Optional[str] = None,
) -> List[Path]:
    """Ordered list of paths where a source's media may be stored."""
    candidates: List[Path] = []

    if is_valid_hash(content_hash):
        extensions = []
        preferred = _normalize_extension(container)
        if preferred:
            extensions.append(preferred)
        for ext in MEDIA_FALLBACK_EXTENSIONS:
            if ext not in extensions:
                extensions.append(ext)

        for ext in extensions:
            candidates.append(media_root / f"{content_hash}.{ext}")
        candidates.append(media_root / content_hash)

    name = safe_basename(original_name)
    if name:
        candidate = media_root / name
        if candidate not in candidates:
            candidates.append(candidate)

    return candidates


def resolve_media_path(
    media_root: Path,
    content_hash: Optional[str],
    original_name: Optional[str] = None,
    container: Optional[str] = None,
) -> Optional[Path]:
    """First candidate that exists and is non-empty, or None."""
    for candidate in media_candidates(media_root, content_hash, original_name, container):
        if has_content(candidate):
            return candidate
    return None


def describe_candidates(
    media_root: Path,
    content_hash: Optional[str],
    original_name: Optional[str] = None,
    container: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Existence report for every candidate, used by the debug route."""
    report = []
    for candidate in media_candidates(media_root, content_hash, original_name, container):
        info: Dict[str, Any] = {"path": str(candidate), "exists": False, "size": 0, "mtime": None}
        try:
            stat = candidate.stat()
        except OSError:
            report.append(info)
            continue
        info["exists"] = True
        info["size"] = stat.st_size
        info["mtime"] = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
        report.append(info)
    return report


def timeline_source_ids(project: ExportProject) -> List[str]:
    """Distinct source ids used on the timeline, in first-use order."""
    seen: List[str] = []
    for clip in project.clips:
        if clip.source_id and clip.source_id not in seen:
            seen.append(clip.source_id)
    return seen


def check_timeline_selector(project: ExportProject, selector: SourceSelector) -> Optional[ErrorCode]:
    """Reject whole-timeline exports that would need multi-source composition."""
    if selector.kind != "timeline":
        return None
    if len(timeline_source_ids(project)) > 1:
        return ErrorCode.UNSUPPORTED_TIMELINE
    return None


def resolve_primary_source(project: ExportProject, selector: SourceSelector) -> Optional[ProjectSource]:
    """The single source an export reads from, or None.

    A timeline export resolves only when every clip uses the same source;
    a timeline mixing sources is never guessed at.
    """
    if selector.kind == "source":
        return project.find_source(selector.source_id)

    if selector.kind == "clip":
        clip = project.find_clip(selector.clip_id)
        if clip is None:
            return None
        return project.find_source(clip.source_id)

    clips = project.clips
    if not clips or any(not clip.source_id for clip in clips):
        return None
    source_ids = timeline_source_ids(project)
    if len(source_ids) != 1:
        return None
    return project.find_source(source_ids[0])
