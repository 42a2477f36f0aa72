"""
Upload session table

One record per in-flight upload, held in process memory and keyed by
upload_id. Each session owns an asyncio.Lock that guards its received-chunk
set and status; nothing is locked across sessions.

State machine:
    open -> completing -> completed
    open | completing -> aborted
    open -> expired
completed, aborted and expired are terminal.
"""
import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from ..core.config import settings
from ..core.exceptions import (
    AlreadyCompleting,
    IncompleteUpload,
    InvalidArgument,
    InvalidState,
    SessionExpired,
    SessionNotFound,
)

logger = logging.getLogger(__name__)

SHA256_HEX = re.compile(r"^[0-9a-fA-F]{64}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    OPEN = "open"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    EXPIRED = "expired"


TERMINAL_STATUSES = {SessionStatus.COMPLETED, SessionStatus.ABORTED, SessionStatus.EXPIRED}


@dataclass
class UploadSession:
    """Server-side state of one chunked upload"""
    upload_id: str
    file_name: str
    file_size: int
    total_chunks: int
    content_type: str
    owner_id: str
    created_at: datetime
    expires_at: datetime
    declared_hash: Optional[str] = None
    status: SessionStatus = SessionStatus.OPEN
    received_chunks: set[int] = field(default_factory=set)
    chunk_sizes: dict[int, int] = field(default_factory=dict)
    finished_at: Optional[datetime] = None
    release_id: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_complete(self) -> bool:
        return len(self.received_chunks) == self.total_chunks

    @property
    def missing_chunks(self) -> list[int]:
        return [n for n in range(1, self.total_chunks + 1) if n not in self.received_chunks]

    @property
    def progress_percent(self) -> float:
        return round(len(self.received_chunks) / self.total_chunks * 100, 2)


class SessionManager:
    """
    Concurrency-safe session table.

    Admission (start) and chunk bookkeeping live here, as does the
    open -> completing compare-and-set that makes completion single-flight.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None
                             else settings.UPLOAD_SESSION_TTL_SECONDS)
        self.clock = clock
        self._sessions: dict[str, UploadSession] = {}

    def __contains__(self, upload_id: str) -> bool:
        return upload_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def start_upload(
        self,
        file_name: str,
        file_size: int,
        total_chunks: int,
        owner_id: str,
        content_type: str,
        declared_hash: Optional[str] = None
    ) -> UploadSession:
        """Validate admission and allocate a new open session"""
        errors = []
        if not file_name or not file_name.strip():
            errors.append("file name cannot be empty")
        if file_size is None or file_size < 1:
            errors.append("file size must be greater than 0")
        if total_chunks is None or total_chunks < 1:
            errors.append("total chunks must be greater than 0")
        elif file_size is not None and file_size >= 1 and total_chunks > file_size:
            errors.append("total chunks cannot exceed file size")
        if not owner_id or not owner_id.strip():
            errors.append("owner id cannot be empty")
        if not content_type or not content_type.strip():
            errors.append("content type cannot be empty")
        if declared_hash is not None and not SHA256_HEX.match(declared_hash):
            errors.append("file hash must be a 64 character SHA-256 hex digest")
        if errors:
            raise InvalidArgument(f"Invalid upload request: {'; '.join(errors)}")

        now = self.clock()
        session = UploadSession(
            upload_id=str(uuid.uuid4()),
            file_name=file_name,
            file_size=file_size,
            total_chunks=total_chunks,
            content_type=content_type,
            owner_id=owner_id,
            created_at=now,
            expires_at=now + self.ttl,
            declared_hash=declared_hash.lower() if declared_hash else None
        )
        self._sessions[session.upload_id] = session

        logger.info(
            f"Started upload session {session.upload_id} for {file_name} "
            f"({file_size} bytes, {total_chunks} chunks) owner={owner_id}"
        )
        return session

    def get_session(self, upload_id: str) -> UploadSession:
        """
        Look up a session.

        An open session past its expiry is moved to expired here, so late
        chunks or completions never resurrect it.
        """
        session = self._sessions.get(upload_id)
        if session is None:
            raise SessionNotFound(f"Upload session {upload_id} not found")
        if session.status == SessionStatus.OPEN and self.clock() >= session.expires_at:
            self._finish(session, SessionStatus.EXPIRED)
            logger.info(f"Upload session {upload_id} expired")
        if session.status == SessionStatus.EXPIRED:
            raise SessionExpired(f"Upload session {upload_id} has expired")
        return session

    def check_chunk(self, upload_id: str, chunk_number: int, chunk_size: int) -> UploadSession:
        """Validate a chunk submission without recording it"""
        session = self.get_session(upload_id)
        self._require_open(session)
        if chunk_number < 1 or chunk_number > session.total_chunks:
            raise InvalidArgument(
                f"Invalid chunk number {chunk_number}. Must be between 1 and {session.total_chunks}"
            )
        if chunk_size < 1:
            raise InvalidArgument("Chunk size must be greater than 0")
        return session

    async def record_chunk_received(
        self,
        upload_id: str,
        chunk_number: int,
        chunk_size: int,
        commit: Optional[Callable[[], None]] = None
    ) -> UploadSession:
        """
        Mark a chunk number as present.

        Idempotent: resubmitting a number replaces its recorded size and never
        increases the distinct count beyond total_chunks.

        commit, when given, publishes the chunk bytes. It runs under the
        session lock after the open check, so no chunk lands once the
        session has moved to completing.
        """
        session = self.check_chunk(upload_id, chunk_number, chunk_size)
        async with session.lock:
            self._require_open(session)
            if commit is not None:
                commit()
            session.received_chunks.add(chunk_number)
            session.chunk_sizes[chunk_number] = chunk_size

        logger.info(
            f"Received chunk {chunk_number}/{session.total_chunks} for upload {upload_id} "
            f"({len(session.received_chunks)} distinct)"
        )
        return session

    def is_complete(self, upload_id: str) -> bool:
        return self.get_session(upload_id).is_complete

    async def mark_completing(self, upload_id: str) -> UploadSession:
        """
        Atomic open -> completing transition.

        Exactly one caller wins; concurrent callers get AlreadyCompleting.
        A session with missing chunks fails IncompleteUpload and stays open.
        """
        session = self.get_session(upload_id)
        async with session.lock:
            if session.status == SessionStatus.COMPLETING:
                raise AlreadyCompleting(f"Upload {upload_id} is already being completed")
            self._require_open(session)
            if not session.is_complete:
                missing = session.missing_chunks
                raise IncompleteUpload(
                    f"Upload {upload_id} is missing chunks: {missing}",
                    missing_chunks=missing
                )
            session.status = SessionStatus.COMPLETING

        logger.info(f"Upload {upload_id} is completing")
        return session

    async def mark_completed(self, upload_id: str, release_id: str) -> UploadSession:
        session = self._sessions.get(upload_id)
        if session is None:
            raise SessionNotFound(f"Upload session {upload_id} not found")
        async with session.lock:
            if session.status != SessionStatus.COMPLETING:
                raise InvalidState(f"Upload {upload_id} is {session.status.value}, not completing")
            session.release_id = release_id
            self._finish(session, SessionStatus.COMPLETED)

        logger.info(f"Upload {upload_id} completed as release {release_id}")
        return session

    async def mark_aborted(self, upload_id: str) -> Optional[UploadSession]:
        """
        Move an open or completing session to aborted.

        Used by the completion path to unwind failures, so it never raises for
        a session that is already gone or terminal.
        """
        session = self._sessions.get(upload_id)
        if session is None:
            return None
        async with session.lock:
            if session.status in TERMINAL_STATUSES:
                return session
            self._finish(session, SessionStatus.ABORTED)

        logger.warning(f"Upload {upload_id} aborted")
        return session

    async def abort(self, upload_id: str) -> UploadSession:
        """Client cancellation: only an open session can be aborted"""
        session = self.get_session(upload_id)
        async with session.lock:
            if session.status == SessionStatus.COMPLETING:
                raise AlreadyCompleting(f"Upload {upload_id} is being completed and cannot be cancelled")
            if session.status == SessionStatus.ABORTED:
                return session
            self._require_open(session)
            self._finish(session, SessionStatus.ABORTED)

        logger.info(f"Cancelled upload session {upload_id}")
        return session

    def expire_overdue(self, now: Optional[datetime] = None) -> list[str]:
        """Move every open session past its expiry to expired"""
        now = now or self.clock()
        expired = []
        for session in list(self._sessions.values()):
            if session.status == SessionStatus.OPEN and now >= session.expires_at:
                self._finish(session, SessionStatus.EXPIRED, now)
                expired.append(session.upload_id)
        return expired

    def sweep_candidates(self, grace: timedelta, now: Optional[datetime] = None) -> list[str]:
        """Terminal sessions whose grace period has elapsed"""
        now = now or self.clock()
        return [
            s.upload_id for s in self._sessions.values()
            if s.status in TERMINAL_STATUSES and s.finished_at is not None
            and now - s.finished_at >= grace
        ]

    def remove(self, upload_id: str) -> None:
        self._sessions.pop(upload_id, None)

    def known_ids(self) -> set[str]:
        return set(self._sessions)

    def _require_open(self, session: UploadSession) -> None:
        if session.status == SessionStatus.EXPIRED:
            raise SessionExpired(f"Upload session {session.upload_id} has expired")
        if session.status != SessionStatus.OPEN:
            raise InvalidState(f"Upload session {session.upload_id} is {session.status.value}")

    def _finish(self, session: UploadSession, status: SessionStatus, now: Optional[datetime] = None) -> None:
        session.status = status
        session.finished_at = now or self.clock()
