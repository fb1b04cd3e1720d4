"""Media store service - content-addressed storage for uploaded sources."""

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

from export_service.exceptions import HashMismatchError, InvalidRequestError
from export_service.services.config_service import ConfigService, get_config_service
from export_service.services.media_resolver import is_valid_hash, safe_basename
from export_service.utils.media import has_content, remove_file

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PUBLIC_PREFIX = "/media-root"


@dataclass(frozen=True)
class StoredMedia:
    """Result of storing one upload."""
    hash: str
    path: Path
    cached: bool

    @property
    def public_path(self) -> str:
        return f"{PUBLIC_PREFIX}/{self.path.name}"


class MediaStore:
    """
    Service for accepting uploaded source media.

    Files are stored under the media root as ``<hash><ext>`` which is the
    first family of names the media resolver looks for.

    Responsibilities:
    - Stream uploads to a temp file while hashing them
    - Reject uploads whose content does not match the claimed hash
    - Keep one copy per hash (re-uploads are reported as cached)
    """

    def __init__(
        self,
        media_root: Path,
        max_upload_bytes: int,
        config_service: Optional[ConfigService] = None,
    ):
        self.media_root = media_root
        self.max_upload_bytes = max_upload_bytes
        self.config_service = config_service or get_config_service()

    def deduce_extension(self, original_name: Optional[str], content_type: Optional[str]) -> str:
        """Extension from the sanitized original name, else from the content type."""
        safe_name = safe_basename(original_name)
        if safe_name:
            suffix = PurePosixPath(safe_name).suffix
            if suffix:
                return suffix.lower()
        return self.config_service.get_upload_extension(content_type)

    def save_upload(
        self,
        stream: BinaryIO,
        claimed_hash: str,
        original_name: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StoredMedia:
        """Store an uploaded file under its content hash.

        Args:
            stream: Binary file object positioned at the start of the upload
            claimed_hash: Hex sha256 the client computed
            original_name: Client-side file name, used for the extension
            content_type: Upload content type, used when the name has no extension

        Raises:
            InvalidRequestError: Missing/malformed hash or oversized upload
            HashMismatchError: Content does not hash to ``claimed_hash``
        """
        claimed_hash = (claimed_hash or "").strip()
        if not is_valid_hash(claimed_hash):
            raise InvalidRequestError("file and hash are required")

        self.media_root.mkdir(parents=True, exist_ok=True)
        ext = self.deduce_extension(original_name, content_type)
        temp_path = self.media_root / f"upload-{uuid.uuid4().hex}{ext}"

        try:
            computed = self._write_hashed(stream, temp_path)
            if computed != claimed_hash:
                raise HashMismatchError(claimed_hash, computed)

            final_path = self.media_root / f"{claimed_hash}{ext}"
            if has_content(final_path):
                logger.info(f"Upload {claimed_hash} already stored as {final_path.name}")
                return StoredMedia(hash=claimed_hash, path=final_path, cached=True)

            os.replace(temp_path, final_path)
            logger.info(f"Stored upload {claimed_hash} as {final_path.name}")
            return StoredMedia(hash=claimed_hash, path=final_path, cached=False)
        finally:
            remove_file(temp_path)

    def _write_hashed(self, stream: BinaryIO, temp_path: Path) -> str:
        digest = hashlib.sha256()
        written = 0
        with open(temp_path, "wb") as f:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_upload_bytes:
                    raise InvalidRequestError(
                        f"upload exceeds {self.max_upload_bytes} bytes",
                        {"maxUploadBytes": self.max_upload_bytes},
                    )
                digest.update(chunk)
                f.write(chunk)
        if written == 0:
            raise InvalidRequestError("file and hash are required")
        return digest.hexdigest()
