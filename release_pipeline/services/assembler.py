"""
Release assembler: chunks -> one object in the durable store

Chunks are read strictly in ascending order through a file-like reader that
MinIO consumes part by part, and the SHA-256/byte count is accumulated as the
bytes flow. The assembled file is never held in memory or written to disk.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional

from ..core.exceptions import IncompleteUpload
from .chunk_store import ChunkStore
from .integrity import StreamDigest
from .storage import StorageService

logger = logging.getLogger(__name__)


class AssemblyCancelled(Exception):
    """Raised inside the writer thread to abort an in-flight upload"""


@dataclass(frozen=True)
class AssembledBlob:
    blob_key: str
    storage_url: str
    size: int
    hash: str


class ChunkStreamReader:
    """
    Read-only stream over part_1..part_N of one upload.

    ``read(n)`` may return fewer than n bytes at a chunk boundary; MinIO keeps
    reading until it has a full part. A chunk missing at read time raises
    IncompleteUpload, and ``cancel()`` makes the next read raise
    AssemblyCancelled so the object-store write is abandoned.
    """

    def __init__(self, chunks: ChunkStore, upload_id: str, total_chunks: int):
        self.chunks = chunks
        self.upload_id = upload_id
        self.total_chunks = total_chunks
        self.digest = StreamDigest()
        self._next_chunk = 1
        self._current: Optional[BinaryIO] = None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def read(self, size: int = -1) -> bytes:
        while True:
            if self._cancelled.is_set():
                raise AssemblyCancelled(f"Assembly of upload {self.upload_id} cancelled")

            if self._current is None:
                if self._next_chunk > self.total_chunks:
                    return b""
                self._current = self.chunks.open_chunk(self.upload_id, self._next_chunk)
                self._next_chunk += 1

            data = self._current.read(size if size and size > 0 else -1)
            if data:
                self.digest.update(data)
                return data

            # End of this chunk, move on to the next one
            self._current.close()
            self._current = None

    def close(self) -> None:
        if self._current is not None:
            self._current.close()
            self._current = None


class ReleaseAssembler:
    """Concatenates an upload's chunks into a single stored blob"""

    def __init__(self, chunks: ChunkStore, storage: StorageService):
        self.chunks = chunks
        self.storage = storage

    async def assemble_and_upload(
        self,
        upload_id: str,
        total_chunks: int,
        blob_key: str,
        content_type: str = "application/octet-stream"
    ) -> AssembledBlob:
        """
        Stream chunks 1..total_chunks into the object store under blob_key.

        Raises:
            IncompleteUpload: a chunk is missing from the chunk store
            StorageWriteError: the object store rejected the write
            asyncio.CancelledError: the caller was cancelled; the write was
                aborted before this is re-raised
        """
        missing = self.chunks.missing_chunks(upload_id, total_chunks)
        if missing:
            raise IncompleteUpload(
                f"Upload {upload_id} is missing chunk data for: {missing}",
                missing_chunks=missing
            )

        length = sum(self.chunks.chunk_size(upload_id, n) for n in range(1, total_chunks + 1))
        reader = ChunkStreamReader(self.chunks, upload_id, total_chunks)
        logger.info(f"Assembling {total_chunks} chunks ({length} bytes) of upload {upload_id} into {blob_key}")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            None,
            self.storage.put_stream,
            blob_key,
            reader,
            length,
            content_type
        )
        try:
            storage_url = await asyncio.shield(future)
        except asyncio.CancelledError:
            logger.warning(f"Assembly of upload {upload_id} cancelled, aborting write to {blob_key}")
            reader.cancel()
            # Wait for the writer thread so nothing lands after the caller cleans up
            await asyncio.wait([future])
            if not future.cancelled():
                future.exception()
            raise
        finally:
            reader.close()

        logger.info(f"Assembled upload {upload_id}: {reader.digest.size} bytes, sha256 {reader.digest.hexdigest()}")
        return AssembledBlob(
            blob_key=blob_key,
            storage_url=storage_url,
            size=reader.digest.size,
            hash=reader.digest.hexdigest()
        )
