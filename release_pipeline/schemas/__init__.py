"""Schemas module exports"""
from .release import (
    ProductFileSchema,
    FullVersionArtifact,
    AddonVersionArtifact,
    PatchArtifact,
    ReleaseArtifact,
    UpdateVersionMetadataRequest,
    DownloadUrlResponse,
)
from .upload import (
    StartUploadRequest,
    StartUploadResponse,
    ChunkAck,
    UploadStatusResponse,
    CompleteUploadRequest,
    AbortUploadResponse,
)

__all__ = [
    "ProductFileSchema",
    "FullVersionArtifact",
    "AddonVersionArtifact",
    "PatchArtifact",
    "ReleaseArtifact",
    "UpdateVersionMetadataRequest",
    "DownloadUrlResponse",
    "StartUploadRequest",
    "StartUploadResponse",
    "ChunkAck",
    "UploadStatusResponse",
    "CompleteUploadRequest",
    "AbortUploadResponse",
]
