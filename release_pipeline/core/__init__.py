"""Core module exports"""
from .config import settings, Settings
from .exceptions import (
    UploadPipelineError,
    InvalidArgument,
    SessionNotFound,
    SessionExpired,
    ReleaseNotFound,
    InvalidState,
    IncompleteUpload,
    AlreadyCompleting,
    HashMismatch,
    SizeMismatch,
    StorageWriteError,
)

__all__ = [
    "settings",
    "Settings",
    "UploadPipelineError",
    "InvalidArgument",
    "SessionNotFound",
    "SessionExpired",
    "ReleaseNotFound",
    "InvalidState",
    "IncompleteUpload",
    "AlreadyCompleting",
    "HashMismatch",
    "SizeMismatch",
    "StorageWriteError",
]
