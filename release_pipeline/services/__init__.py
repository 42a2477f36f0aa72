"""Services module exports"""
from .storage import StorageService
from .chunk_store import ChunkStore
from .sessions import SessionManager, SessionStatus, UploadSession
from .integrity import IntegrityVerifier, StreamDigest, verify_chunk_checksum
from .assembler import AssembledBlob, ReleaseAssembler
from .catalog import ReleaseCatalogWriter
from .pipeline import UploadPipeline, build_blob_key
from .janitor import SessionJanitor

__all__ = [
    "StorageService",
    "ChunkStore",
    "SessionManager",
    "SessionStatus",
    "UploadSession",
    "IntegrityVerifier",
    "StreamDigest",
    "verify_chunk_checksum",
    "AssembledBlob",
    "ReleaseAssembler",
    "ReleaseCatalogWriter",
    "UploadPipeline",
    "build_blob_key",
    "SessionJanitor",
]
