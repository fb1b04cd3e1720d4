"""
Error taxonomy and exception classes for the export service.

Job records carry an ``ErrorCode`` value in their ``error`` field; the API
layer turns ``ExportServiceError`` subclasses into ``{"error": code}``
responses with the matching HTTP status.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error codes surfaced to clients."""
    INVALID_REQUEST = "invalid_request"
    HASH_MISMATCH = "hash_mismatch"
    UNSUPPORTED_TIMELINE = "unsupported_timeline"
    MEDIA_MISSING = "media_missing"
    JOB_TOO_LARGE = "job_too_large"
    OVER_CAPACITY = "over_capacity"
    NOT_FOUND = "not_found"
    OUTPUT_MISSING = "output_missing"
    ENCODER_UNAVAILABLE = "encoder_unavailable"
    ENCODE_TIMEOUT = "encode_timeout"
    INTERNAL_ERROR = "internal_error"
    UNAUTHORIZED = "unauthorized"


class ExportServiceError(Exception):
    """Base exception for all export service errors."""

    status_code = 500

    def __init__(self, code: ErrorCode, message: Optional[str] = None, details: Optional[dict] = None):
        self.code = code
        self.message = message or code.value
        self.details = details or {}
        super().__init__(self.message)


class InvalidRequestError(ExportServiceError):
    """Raised when a submission or upload is malformed."""

    status_code = 400

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(ErrorCode.INVALID_REQUEST, message, details)


class HashMismatchError(ExportServiceError):
    """Raised when uploaded bytes do not match the claimed content hash."""

    status_code = 400

    def __init__(self, claimed: str, computed: str):
        super().__init__(
            ErrorCode.HASH_MISMATCH,
            f"Claimed hash {claimed} does not match computed hash {computed}",
            {"claimed": claimed, "computed": computed},
        )


class NotFoundError(ExportServiceError):
    """Raised when a requested resource does not exist."""

    status_code = 404

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(ErrorCode.NOT_FOUND, message, details)


class JobNotFoundError(NotFoundError):
    """Raised for unknown job ids, or downloads requested before completion."""

    def __init__(self, job_id: str):
        super().__init__(f"Export job '{job_id}' not found", {"job_id": job_id})


class UnauthorizedError(ExportServiceError):
    """Raised when the shared export token is missing or wrong."""

    status_code = 401

    def __init__(self):
        super().__init__(ErrorCode.UNAUTHORIZED)


class InvalidTransitionError(ExportServiceError):
    """Raised when a job status change would break the lifecycle ordering."""

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(
            ErrorCode.INTERNAL_ERROR,
            f"Job '{job_id}' cannot move from {current} to {requested}",
            {"job_id": job_id, "current": current, "requested": requested},
        )


class EncoderError(ExportServiceError):
    """Raised by an encoder adapter that cannot launch an encode."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.ENCODER_UNAVAILABLE):
        super().__init__(code, message)
