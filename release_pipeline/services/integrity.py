"""
Integrity verification for assembled uploads
"""
import hashlib
import logging
from typing import Optional

from ..core.exceptions import HashMismatch, SizeMismatch
from .storage import StorageService

logger = logging.getLogger(__name__)


class StreamDigest:
    """
    Running SHA-256 and byte count.

    Fed incrementally while bytes stream to the object store, so the whole
    file is hashed in a single pass with constant memory.
    """

    def __init__(self):
        self._hasher = hashlib.sha256()
        self.size = 0

    def update(self, data: bytes) -> None:
        self._hasher.update(data)
        self.size += len(data)

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


def verify_chunk_checksum(chunk_number: int, data: bytes, expected_md5: Optional[str]) -> str:
    """
    Check a chunk against the MD5 the client sent with it.

    Returns:
        The chunk's MD5 hex digest
    """
    part_md5 = hashlib.md5(data).hexdigest()
    if expected_md5 and part_md5.lower() != expected_md5.strip().lower():
        logger.error(f"Checksum mismatch for chunk {chunk_number}: expected {expected_md5}, got {part_md5}")
        raise HashMismatch(f"Checksum mismatch for chunk {chunk_number}")
    return part_md5


class IntegrityVerifier:
    """Compares an assembled blob against the declared size and hash"""

    def __init__(self, storage: StorageService):
        self.storage = storage

    def verify(
        self,
        blob_key: str,
        assembled_size: int,
        assembled_hash: str,
        declared_size: int,
        declared_hash: Optional[str] = None
    ) -> None:
        """
        Raise on any mismatch after deleting the blob.

        The declared hash is optional (clients may not know it upfront); when
        present it must match exactly, compared case-insensitively as hex.
        """
        if assembled_size != declared_size:
            logger.error(
                f"Size mismatch for {blob_key}: declared {declared_size}, assembled {assembled_size}"
            )
            self._discard(blob_key)
            raise SizeMismatch(
                f"File integrity check failed. Declared {declared_size} bytes, assembled {assembled_size}"
            )

        if declared_hash and declared_hash.lower() != assembled_hash.lower():
            logger.error(
                f"File hash mismatch for {blob_key}: expected {declared_hash}, got {assembled_hash}"
            )
            self._discard(blob_key)
            raise HashMismatch("File integrity check failed. Hash mismatch.")

        logger.info(f"File verified: {blob_key} ({assembled_size} bytes, sha256 {assembled_hash[:16]}...)")

    def _discard(self, blob_key: str) -> None:
        self.storage.delete(blob_key)
        logger.info(f"Discarded unverified blob {blob_key}")
