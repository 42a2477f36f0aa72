"""
Pydantic schemas for the chunked upload endpoints
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.enums import FileType, Platform


class StartUploadRequest(BaseModel):
    """Request to open an upload session"""
    file_name: str = Field(..., description="Name of the file being uploaded")
    file_size: int = Field(..., description="Declared total size in bytes")
    total_chunks: int = Field(..., description="Number of chunks the client will send")
    owner_id: str = Field(..., description="Uploading user")
    content_type: str = Field("application/octet-stream", description="MIME type of the assembled blob")
    file_hash: Optional[str] = Field(None, description="SHA-256 of the whole file, if known upfront")


class StartUploadResponse(BaseModel):
    upload_id: str
    total_chunks: int
    expires_at: datetime


class ChunkAck(BaseModel):
    """Acknowledgement of a stored chunk"""
    upload_id: str
    chunk_number: int
    received: bool = True
    size: int
    received_chunks: int  # Distinct chunk numbers received so far
    total_chunks: int


class UploadStatusResponse(BaseModel):
    """Progress of an upload session (client uses this to resume)"""
    upload_id: str
    file_name: str
    status: str
    total_chunks: int
    received_chunks: list[int]
    missing_chunks: list[int]
    progress_percent: float
    expires_at: datetime
    release_id: Optional[str] = None


class CompleteUploadRequest(BaseModel):
    """
    Request to assemble an upload into a release.

    Which optional fields are required depends on file_type:
    game_addon needs addon_id, game_patch needs from_version and to_version.
    """
    game_id: str
    platform: Platform
    version: Optional[str] = None
    final_file_name: str
    file_type: FileType
    addon_id: Optional[str] = None
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    changelog: Optional[str] = None
    release_date: Optional[datetime] = None
    expected_hash: Optional[str] = Field(None, description="SHA-256 the assembled file must match")


class AbortUploadResponse(BaseModel):
    upload_id: str
    status: str
