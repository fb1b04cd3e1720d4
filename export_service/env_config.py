"""Centralized runtime configuration for the export service.

This module provides:
- Single source of truth for directories, limits and timeouts
- Environment variable overrides for every setting (container friendly)
- Logging setup shared by the launcher and tests

Usage:
    from export_service.env_config import ServiceSettings

    settings = ServiceSettings.from_env()
"""

import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from export_service.services.render_params import DEFAULT_LIMITS, RenderLimits

logger = logging.getLogger(__name__)

# Scratch root shared by media store and rendered outputs unless overridden
_DEFAULT_ROOT = Path(tempfile.gettempdir()) / "export-service"

DEFAULT_MEDIA_ROOT = _DEFAULT_ROOT / "media"
DEFAULT_OUTPUT_DIR = _DEFAULT_ROOT / "renders"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if value < minimum:
        logger.warning(f"Ignoring out-of-range {name}={raw!r}, using {default}")
        return default
    return value


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}, using {default}")
        return default
    return value


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
    return default


@dataclass(frozen=True)
class ServiceSettings:
    """Runtime settings for one service process."""
    media_root: Path = DEFAULT_MEDIA_ROOT
    output_dir: Path = DEFAULT_OUTPUT_DIR
    max_concurrent_renders: int = 2
    max_queued_exports: int = 16
    job_ttl_seconds: float = 60 * 60
    prune_interval_seconds: float = 5 * 60
    job_timeout_seconds: float = 2 * 60 * 60
    debug_trail_size: int = 50
    allow_placeholder_render: bool = True
    max_upload_bytes: int = 1024 * 1024 * 1024
    ffmpeg_path: str = "ffmpeg"
    auth_token: Optional[str] = None
    cors_origin: Optional[str] = None
    environment: str = "development"
    limits: RenderLimits = field(default=DEFAULT_LIMITS)

    @property
    def debug(self) -> bool:
        """Debug output (debug trails, candidate reports) outside production."""
        return self.environment != "production"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceSettings":
        """Build settings from environment variables."""
        if environ is None:
            environ = os.environ

        return cls(
            media_root=Path(environ.get("EXPORT_MEDIA_ROOT") or DEFAULT_MEDIA_ROOT),
            output_dir=Path(environ.get("EXPORT_OUTPUT_DIR") or DEFAULT_OUTPUT_DIR),
            max_concurrent_renders=_env_int(environ, "MAX_CONCURRENT_RENDERS", 2, minimum=1),
            max_queued_exports=_env_int(environ, "MAX_QUEUED_EXPORTS", 16),
            job_ttl_seconds=_env_float(environ, "EXPORT_JOB_TTL_SECONDS", 60 * 60),
            prune_interval_seconds=_env_float(environ, "EXPORT_PRUNE_INTERVAL_SECONDS", 5 * 60),
            job_timeout_seconds=_env_float(environ, "EXPORT_JOB_TIMEOUT_SECONDS", 2 * 60 * 60),
            debug_trail_size=_env_int(environ, "EXPORT_DEBUG_TRAIL_SIZE", 50, minimum=1),
            allow_placeholder_render=_env_bool(environ, "EXPORT_ALLOW_PLACEHOLDER", True),
            max_upload_bytes=_env_int(environ, "EXPORT_MAX_UPLOAD_BYTES", 1024 * 1024 * 1024, minimum=1),
            ffmpeg_path=environ.get("FFMPEG_PATH") or "ffmpeg",
            auth_token=environ.get("EXPORT_AUTH_TOKEN") or None,
            cors_origin=environ.get("EXPORT_CORS_ORIGIN") or None,
            environment=(environ.get("EXPORT_ENV") or "development").strip().lower(),
        )

    def ensure_directories(self) -> None:
        """Create the media and output directories if missing."""
        self.media_root.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(debug: bool = False) -> None:
    """Send service logs to stdout with timestamps."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
