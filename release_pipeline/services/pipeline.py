"""
Upload pipeline: start -> chunks -> complete

Composes the session table, chunk store, assembler, verifier and catalog
writer. Completion runs as a saga: the object store and the metadata store
share no transaction, so any failure after the open -> completing transition
deletes the uploaded blob and aborts the session instead of leaving it
completing.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Union

from ..core.config import settings
from ..core.exceptions import InvalidArgument, ReleaseNotFound
from ..models import FileType, Platform
from ..schemas import AddonVersionArtifact, FullVersionArtifact, PatchArtifact
from .assembler import AssembledBlob, ReleaseAssembler
from .catalog import ReleaseCatalogWriter
from .chunk_store import ChunkStore
from .integrity import IntegrityVerifier, verify_chunk_checksum
from .sessions import SessionManager, UploadSession
from .storage import StorageService

logger = logging.getLogger(__name__)

Artifact = Union[FullVersionArtifact, AddonVersionArtifact, PatchArtifact]


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def build_blob_key(
    upload_id: str,
    file_type: FileType,
    game_id: str,
    platform: Platform,
    final_file_name: str,
    version: Optional[str] = None,
    addon_id: Optional[str] = None
) -> str:
    """
    Object key of a release blob.

    The upload id is part of every key, so re-uploading the same version
    writes a new object and never overwrites published bytes.
    """
    if file_type == FileType.GAME_VERSION:
        return f"games/{game_id}/versions/{platform.value}/{version}/{upload_id}/{final_file_name}"
    if file_type == FileType.GAME_ADDON:
        return f"games/{game_id}/addons/{addon_id}/{platform.value}/{version}/{upload_id}/{final_file_name}"
    return f"games/{game_id}/patches/{platform.value}/{upload_id}/{final_file_name}"


class UploadPipeline:
    """Entry point for every upload and release operation"""

    def __init__(
        self,
        sessions: SessionManager,
        chunks: ChunkStore,
        storage: StorageService,
        catalog: ReleaseCatalogWriter,
        max_chunk_size: Optional[int] = None
    ):
        self.sessions = sessions
        self.chunks = chunks
        self.storage = storage
        self.catalog = catalog
        self.assembler = ReleaseAssembler(chunks, storage)
        self.verifier = IntegrityVerifier(storage)
        self.max_chunk_size = max_chunk_size or settings.MAX_CHUNK_SIZE

    def start_upload(
        self,
        file_name: str,
        file_size: int,
        total_chunks: int,
        owner_id: str,
        content_type: str,
        declared_hash: Optional[str] = None
    ) -> UploadSession:
        return self.sessions.start_upload(
            file_name, file_size, total_chunks, owner_id, content_type, declared_hash
        )

    async def upload_chunk(
        self,
        upload_id: str,
        chunk_number: int,
        chunk_size: int,
        data: bytes,
        chunk_md5: Optional[str] = None
    ) -> UploadSession:
        """
        Store one chunk and record its receipt.

        Idempotent: resubmitting a chunk number overwrites its bytes, and the
        later bytes are the ones assembled.

        The bytes are staged off the event loop and only renamed into place
        while the session is still open. A chunk rejected because completion
        started first never reaches the assembled release.
        """
        self.sessions.check_chunk(upload_id, chunk_number, chunk_size)
        if chunk_size > self.max_chunk_size:
            raise InvalidArgument(f"Chunk size exceeds the maximum of {self.max_chunk_size} bytes")
        if len(data) != chunk_size:
            raise InvalidArgument(
                f"Chunk {chunk_number} declared {chunk_size} bytes but {len(data)} were received"
            )
        verify_chunk_checksum(chunk_number, data, chunk_md5)

        loop = asyncio.get_running_loop()
        staged = await loop.run_in_executor(None, self.chunks.stage_chunk, upload_id, chunk_number, data)
        try:
            return await self.sessions.record_chunk_received(
                upload_id, chunk_number, chunk_size,
                commit=lambda: self.chunks.commit_chunk(staged, upload_id, chunk_number)
            )
        finally:
            self.chunks.discard(staged)

    def get_status(self, upload_id: str) -> UploadSession:
        return self.sessions.get_session(upload_id)

    async def abort_upload(self, upload_id: str) -> UploadSession:
        """Client cancellation; chunk data is reclaimed by the janitor"""
        return await self.sessions.abort(upload_id)

    async def complete_upload(
        self,
        upload_id: str,
        game_id: str,
        platform: Platform,
        version: Optional[str],
        final_file_name: str,
        file_type: FileType,
        addon_id: Optional[str] = None,
        from_version: Optional[str] = None,
        to_version: Optional[str] = None,
        changelog: Optional[str] = None,
        release_date: Optional[datetime] = None,
        expected_hash: Optional[str] = None
    ) -> Artifact:
        """
        Assemble, verify and record an upload as a release.

        Raises:
            InvalidArgument: missing branch fields (checked before anything
                is read or mutated)
            SessionNotFound / SessionExpired / InvalidState
            IncompleteUpload: chunks missing; the session stays open
            AlreadyCompleting: a concurrent completion won
            HashMismatch / SizeMismatch: blob deleted, session aborted
            StorageWriteError: object store rejected the write
        """
        self._validate_completion(game_id, platform, version, final_file_name, file_type,
                                  addon_id, from_version, to_version)

        session = await self.sessions.mark_completing(upload_id)
        blob_key = build_blob_key(upload_id, file_type, game_id, platform,
                                  final_file_name, version, addon_id)
        loop = asyncio.get_running_loop()
        succeeded = False
        try:
            blob = await self.assembler.assemble_and_upload(
                upload_id, session.total_chunks, blob_key, session.content_type
            )
            await loop.run_in_executor(
                None,
                self.verifier.verify,
                blob.blob_key,
                blob.size,
                blob.hash,
                session.file_size,
                expected_hash or session.declared_hash
            )

            record = asyncio.ensure_future(self._record_release(
                upload_id, game_id, platform, version, final_file_name, file_type,
                addon_id, from_version, to_version, changelog, release_date, blob
            ))
            try:
                artifact = await asyncio.shield(record)
            except asyncio.CancelledError:
                # A verified blob whose commit is under way is kept once committed
                await asyncio.wait([record])
                if not record.cancelled() and record.exception() is None:
                    succeeded = True
                raise
            succeeded = True
            return artifact
        finally:
            if not succeeded:
                await self._compensate(upload_id, blob_key)

    async def _record_release(
        self,
        upload_id: str,
        game_id: str,
        platform: Platform,
        version: Optional[str],
        final_file_name: str,
        file_type: FileType,
        addon_id: Optional[str],
        from_version: Optional[str],
        to_version: Optional[str],
        changelog: Optional[str],
        release_date: Optional[datetime],
        blob: AssembledBlob
    ) -> Artifact:
        if file_type == FileType.GAME_VERSION:
            artifact = await self.catalog.persist_full_version(
                upload_id, game_id, platform, version, blob, final_file_name,
                changelog, release_date
            )
        elif file_type == FileType.GAME_ADDON:
            artifact = await self.catalog.persist_addon_version(
                upload_id, addon_id, game_id, platform, version, blob, final_file_name,
                changelog, release_date
            )
        else:
            artifact = await self.catalog.persist_patch(
                upload_id, game_id, platform, final_file_name, from_version, to_version,
                blob, release_date
            )
        await self.sessions.mark_completed(upload_id, artifact.id)
        return artifact

    async def get_release_by_version(self, product_id: str, platform: Platform, version: str):
        return await self.catalog.get_release_by_version(product_id, platform, version)

    async def get_patch_by_name(self, product_id: str, platform: Platform, name: str):
        return await self.catalog.get_patch_by_name(product_id, platform, name)

    async def update_version_metadata(self, release_id: str, changelog: Optional[str] = None,
                                      release_date: Optional[datetime] = None):
        return await self.catalog.update_version_metadata(release_id, changelog, release_date)

    async def download_url(self, release_id: str, expiry_seconds: Optional[int] = None) -> str:
        release = await self.catalog.get_release_by_id(release_id)
        storage_key = release.files[0].file_path
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, self.storage.exists, storage_key):
            logger.error(f"❌ Release {release_id} points at missing object {storage_key}")
            raise ReleaseNotFound(f"Release {release_id} has no stored file")
        return await loop.run_in_executor(None, self.storage.presigned_url, storage_key, expiry_seconds)

    def _validate_completion(
        self,
        game_id: str,
        platform: Optional[Platform],
        version: Optional[str],
        final_file_name: str,
        file_type: FileType,
        addon_id: Optional[str],
        from_version: Optional[str],
        to_version: Optional[str]
    ) -> None:
        errors = []
        if _blank(game_id):
            errors.append("game id is required")
        if platform is None:
            errors.append("platform is required")
        if _blank(final_file_name):
            errors.append("final file name is required")
        elif "/" in final_file_name or "\\" in final_file_name:
            errors.append("final file name cannot contain path separators")
        if file_type in (FileType.GAME_VERSION, FileType.GAME_ADDON) and _blank(version):
            errors.append("version is required")
        if file_type == FileType.GAME_ADDON and _blank(addon_id):
            errors.append("addon id is required for addon uploads")
        if file_type == FileType.GAME_PATCH:
            if _blank(from_version):
                errors.append("from version is required for patches")
            if _blank(to_version):
                errors.append("to version is required for patches")
        if errors:
            raise InvalidArgument(f"Invalid completion request: {'; '.join(errors)}")

    async def _compensate(self, upload_id: str, blob_key: str) -> None:
        """Undo a failed completion: drop the blob, abort the session"""
        logger.warning(f"Completion of upload {upload_id} failed, removing {blob_key}")
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.storage.delete, blob_key)
        except Exception as e:
            logger.error(f"❌ Compensating delete of {blob_key} failed: {e}")
        finally:
            await self.sessions.mark_aborted(upload_id)
