"""
Scratch storage for uploaded chunks

Layout: {root}/{upload_id}/part_{chunk_number}

Each chunk number owns its own file, so parallel chunk uploads for one session
never touch the same path. Writes go to a unique temp file that is renamed
over the final path: a concurrent reader sees either the previous or the new
complete chunk.
"""
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from ..core.config import settings
from ..core.exceptions import IncompleteUpload

logger = logging.getLogger(__name__)


class ChunkStore:
    """Filesystem-backed chunk storage keyed by (upload_id, chunk_number)"""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.CHUNK_STORE_DIR)

    def upload_dir(self, upload_id: str) -> Path:
        return self.root / upload_id

    def chunk_path(self, upload_id: str, chunk_number: int) -> Path:
        return self.upload_dir(upload_id) / f"part_{chunk_number}"

    def write_chunk(self, upload_id: str, chunk_number: int, data: bytes) -> int:
        """
        Persist chunk bytes, replacing any earlier write for the same number.

        Returns:
            Number of bytes written
        """
        staged = self.stage_chunk(upload_id, chunk_number, data)
        self.commit_chunk(staged, upload_id, chunk_number)
        return len(data)

    def stage_chunk(self, upload_id: str, chunk_number: int, data: bytes) -> Path:
        """
        Write chunk bytes to a unique temp file next to their final path.

        Nothing is visible to readers until commit_chunk renames it.
        """
        upload_dir = self.upload_dir(upload_id)
        upload_dir.mkdir(parents=True, exist_ok=True)

        tmp_path = upload_dir / f".part_{chunk_number}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return tmp_path

    def commit_chunk(self, staged: Path, upload_id: str, chunk_number: int) -> None:
        """Atomically move a staged chunk over its final path"""
        try:
            os.replace(staged, self.chunk_path(upload_id, chunk_number))
        except BaseException:
            staged.unlink(missing_ok=True)
            raise
        logger.debug(f"Stored chunk {chunk_number} for upload {upload_id}")

    def discard(self, staged: Path) -> None:
        staged.unlink(missing_ok=True)

    def has_chunk(self, upload_id: str, chunk_number: int) -> bool:
        return self.chunk_path(upload_id, chunk_number).is_file()

    def chunk_size(self, upload_id: str, chunk_number: int) -> int:
        try:
            return self.chunk_path(upload_id, chunk_number).stat().st_size
        except FileNotFoundError:
            raise IncompleteUpload(
                f"Chunk {chunk_number} of upload {upload_id} is missing from storage",
                missing_chunks=[chunk_number]
            )

    def missing_chunks(self, upload_id: str, total_chunks: int) -> list[int]:
        """Chunk numbers in [1, total_chunks] with no data on disk"""
        return [n for n in range(1, total_chunks + 1) if not self.has_chunk(upload_id, n)]

    def open_chunk(self, upload_id: str, chunk_number: int) -> BinaryIO:
        try:
            return open(self.chunk_path(upload_id, chunk_number), "rb")
        except FileNotFoundError:
            raise IncompleteUpload(
                f"Chunk {chunk_number} of upload {upload_id} is missing from storage",
                missing_chunks=[chunk_number]
            )

    def delete_upload(self, upload_id: str) -> bool:
        """Remove all chunk data of an upload. Returns False if there was none."""
        upload_dir = self.upload_dir(upload_id)
        if not upload_dir.exists():
            return False
        shutil.rmtree(upload_dir, ignore_errors=True)
        logger.info(f"Cleaned up chunk data for upload {upload_id}")
        return True

    def list_uploads(self) -> list[str]:
        """Upload ids that currently have a chunk directory"""
        if not self.root.exists():
            return []
        return [p.name for p in self.root.iterdir() if p.is_dir()]
