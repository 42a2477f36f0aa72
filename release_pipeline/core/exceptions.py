"""
Error taxonomy for the upload pipeline.

Every failure carries a stable ``kind`` (returned to clients as the ``error``
field) and the HTTP status the API layer maps it to. Retry policy belongs to
the caller:

- ``invalid_argument``: fix the request, do not retry as-is
- ``not_found`` / ``expired``: restart the upload
- ``invalid_state``: operation not valid for the session's current status
- ``incomplete_upload``: keep uploading chunks
- ``already_completing``: another completion won the race, poll instead
- ``hash_mismatch`` / ``size_mismatch``: blob was discarded, re-upload
- ``storage_write_error``: object store rejected the write
"""
from typing import Optional


class UploadPipelineError(Exception):
    """Base class for all pipeline failures"""

    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidArgument(UploadPipelineError):
    kind = "invalid_argument"
    status_code = 400


class SessionNotFound(UploadPipelineError):
    kind = "not_found"
    status_code = 404


class SessionExpired(SessionNotFound):
    kind = "expired"
    status_code = 410


class ReleaseNotFound(UploadPipelineError):
    kind = "not_found"
    status_code = 404


class InvalidState(UploadPipelineError):
    kind = "invalid_state"
    status_code = 409


class IncompleteUpload(UploadPipelineError):
    """Raised when chunks are missing, either by bookkeeping or on disk"""

    kind = "incomplete_upload"
    status_code = 409

    def __init__(self, message: str, missing_chunks: Optional[list[int]] = None):
        super().__init__(message)
        self.missing_chunks = sorted(missing_chunks or [])

    def to_dict(self) -> dict:
        return {**super().to_dict(), "missing_chunks": self.missing_chunks}


class AlreadyCompleting(UploadPipelineError):
    kind = "already_completing"
    status_code = 409


class HashMismatch(UploadPipelineError):
    kind = "hash_mismatch"
    status_code = 422


class SizeMismatch(UploadPipelineError):
    kind = "size_mismatch"
    status_code = 422


class StorageWriteError(UploadPipelineError):
    kind = "storage_write_error"
    status_code = 502
