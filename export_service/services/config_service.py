"""
Configuration service for codec and container tables.

Provides a single source of truth for the static encode configuration
(container MIME types, codec to ffmpeg encoder mapping, upload extension
inference), loaded from ``export_service/config/export_config.json``.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional


class ConfigService:
    """Service for loading and providing export configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize the configuration service.

        Args:
            config_path: Path to configuration JSON file.
                        Defaults to export_service/config/export_config.json
        """
        if config_path is None:
            package_dir = Path(__file__).parent.parent
            config_path = package_dir / "config" / "export_config.json"

        self.config_path = config_path
        self._config = None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            json.JSONDecodeError: If config file is invalid JSON
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    @property
    def config(self) -> Dict[str, Any]:
        """Get the full configuration (cached)."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def get_containers(self) -> Dict[str, Dict[str, Any]]:
        return self.config.get("containers", {})

    def get_container(self, container: str) -> Dict[str, Any]:
        return self.get_containers().get(container, {})

    def get_mime_type(self, container: Optional[str]) -> str:
        """Download content type for a container.

        Args:
            container: Container name (e.g., 'mp4', 'webm')

        Returns:
            MIME type, or the generic binary type for unknown containers
        """
        default = self.config.get("defaultMimeType", "application/octet-stream")
        if not container:
            return default
        return self.get_container(container).get("mimeType", default)

    def get_video_codec(self, codec: Optional[str], container: str) -> Dict[str, Any]:
        """Encoder settings for a requested codec.

        Unknown or missing codecs fall back to the container's default codec,
        then to h264.
        """
        codecs = self.config.get("videoCodecs", {})
        if codec and codec in codecs:
            return codecs[codec]
        default_codec = self.get_container(container).get("defaultVideoCodec", "h264")
        return codecs.get(default_codec, {"encoder": "libx264"})

    def get_audio_encoder(self, codec: Optional[str]) -> Optional[str]:
        """ffmpeg audio encoder for a codec name; unknown names pass through."""
        if not codec or codec == "none":
            return None
        return self.config.get("audioCodecs", {}).get(codec, codec)

    def get_default_pixel_format(self) -> str:
        return self.config.get("defaultPixelFormat", "yuv420p")

    def get_upload_extension(self, mime_type: Optional[str]) -> str:
        """File extension for an uploaded content type ('' when unknown)."""
        if not mime_type:
            return ""
        return self.config.get("uploadMimeExtensions", {}).get(mime_type, "")

    def get_download_filename(self, job_id: str, container: Optional[str]) -> str:
        """Deterministic download filename for a job."""
        prefix = self.config.get("downloadFilenamePrefix", "export")
        return f"{prefix}-{job_id}.{container or 'mp4'}"


# Global instance for easy import
_config_service = None

def get_config_service() -> ConfigService:
    """Get the global configuration service instance.

    Returns:
        ConfigService instance
    """
    global _config_service
    if _config_service is None:
        _config_service = ConfigService()
    return _config_service
