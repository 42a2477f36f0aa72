"""
Tests for the upload session table: admission, chunk bookkeeping, the
completing compare-and-set and expiry.
"""

import asyncio
from datetime import timedelta

import pytest

from release_pipeline.core.config import settings
from release_pipeline.core.exceptions import (
    AlreadyCompleting,
    IncompleteUpload,
    InvalidArgument,
    InvalidState,
    SessionExpired,
    SessionNotFound,
)
from release_pipeline.services import SessionManager, SessionStatus


def start(sessions, file_size=300, total_chunks=3, **kwargs):
    return sessions.start_upload(
        kwargs.get("file_name", "game.zip"),
        file_size,
        total_chunks,
        kwargs.get("owner_id", "dev-1"),
        kwargs.get("content_type", "application/zip"),
        kwargs.get("declared_hash")
    )


def test_start_upload_allocates_open_session(sessions, clock):
    session = start(sessions)

    assert session.status == SessionStatus.OPEN
    assert session.received_chunks == set()
    assert session.expires_at == clock.now + timedelta(seconds=3600)
    assert session.upload_id in sessions


def test_start_upload_ids_are_unique(sessions):
    ids = {start(sessions).upload_id for _ in range(20)}
    assert len(ids) == 20


def test_zero_ttl_is_honoured(clock):
    sessions = SessionManager(ttl_seconds=0, clock=clock)
    session = start(sessions)

    assert session.expires_at == clock.now
    with pytest.raises(SessionExpired):
        sessions.get_session(session.upload_id)


def test_ttl_defaults_to_settings_when_omitted(clock, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_SESSION_TTL_SECONDS", 90)
    session = start(SessionManager(clock=clock))

    assert session.expires_at == clock.now + timedelta(seconds=90)


@pytest.mark.parametrize("file_size,total_chunks", [(0, 1), (10, 0), (-5, 1), (2, 3)])
def test_start_upload_rejects_bad_sizes(sessions, file_size, total_chunks):
    with pytest.raises(InvalidArgument):
        start(sessions, file_size=file_size, total_chunks=total_chunks)


@pytest.mark.parametrize("field", ["file_name", "owner_id", "content_type"])
def test_start_upload_rejects_blank_fields(sessions, field):
    with pytest.raises(InvalidArgument):
        start(sessions, **{field: "   "})


def test_start_upload_validates_declared_hash(sessions):
    with pytest.raises(InvalidArgument):
        start(sessions, declared_hash="not-a-sha")

    session = start(sessions, declared_hash="AB" * 32)
    assert session.declared_hash == "ab" * 32


@pytest.mark.asyncio
async def test_record_chunk_is_idempotent(sessions):
    session = start(sessions, total_chunks=2, file_size=20)

    await sessions.record_chunk_received(session.upload_id, 1, 10)
    await sessions.record_chunk_received(session.upload_id, 1, 9)
    await sessions.record_chunk_received(session.upload_id, 2, 10)
    await sessions.record_chunk_received(session.upload_id, 2, 10)

    assert session.received_chunks == {1, 2}
    assert session.chunk_sizes[1] == 9
    assert sessions.is_complete(session.upload_id)
    assert session.progress_percent == 100.0


@pytest.mark.asyncio
async def test_chunk_commit_is_skipped_once_completion_wins_the_lock(sessions):
    session = start(sessions, total_chunks=2, file_size=20)
    await sessions.record_chunk_received(session.upload_id, 1, 10)
    await sessions.record_chunk_received(session.upload_id, 2, 10)
    commits = []

    await session.lock.acquire()
    retry = asyncio.create_task(
        sessions.record_chunk_received(session.upload_id, 2, 10, commit=lambda: commits.append(2))
    )
    await asyncio.sleep(0)
    session.status = SessionStatus.COMPLETING
    session.lock.release()

    with pytest.raises(InvalidState):
        await retry
    assert commits == []

    await sessions.record_chunk_received(start(sessions).upload_id, 1, 10, commit=lambda: commits.append(1))
    assert commits == [1]


@pytest.mark.asyncio
async def test_record_chunk_validates_range_and_size(sessions):
    session = start(sessions)

    for number in (0, 4, -1):
        with pytest.raises(InvalidArgument):
            await sessions.record_chunk_received(session.upload_id, number, 10)
    with pytest.raises(InvalidArgument):
        await sessions.record_chunk_received(session.upload_id, 1, 0)
    with pytest.raises(SessionNotFound):
        await sessions.record_chunk_received("missing", 1, 10)

    assert session.received_chunks == set()


@pytest.mark.asyncio
async def test_concurrent_chunk_records_do_not_lose_updates(sessions):
    session = start(sessions, file_size=1000, total_chunks=50)

    await asyncio.gather(*[
        sessions.record_chunk_received(session.upload_id, n, 20)
        for n in range(1, 51)
    ])

    assert session.received_chunks == set(range(1, 51))
    assert session.missing_chunks == []


@pytest.mark.asyncio
async def test_mark_completing_requires_every_chunk(sessions):
    session = start(sessions, total_chunks=2, file_size=20)
    await sessions.record_chunk_received(session.upload_id, 1, 10)

    with pytest.raises(IncompleteUpload) as exc_info:
        await sessions.mark_completing(session.upload_id)

    assert exc_info.value.missing_chunks == [2]
    assert session.status == SessionStatus.OPEN


@pytest.mark.asyncio
async def test_mark_completing_is_single_flight(sessions):
    session = start(sessions, total_chunks=1, file_size=10)
    await sessions.record_chunk_received(session.upload_id, 1, 10)

    results = await asyncio.gather(
        *[sessions.mark_completing(session.upload_id) for _ in range(5)],
        return_exceptions=True
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, AlreadyCompleting)]
    assert len(winners) == 1
    assert len(losers) == 4
    assert session.status == SessionStatus.COMPLETING


@pytest.mark.asyncio
async def test_completing_session_rejects_chunks_and_client_abort(sessions):
    session = start(sessions, total_chunks=1, file_size=10)
    await sessions.record_chunk_received(session.upload_id, 1, 10)
    await sessions.mark_completing(session.upload_id)

    with pytest.raises(InvalidState):
        await sessions.record_chunk_received(session.upload_id, 1, 10)
    with pytest.raises(AlreadyCompleting):
        await sessions.abort(session.upload_id)


@pytest.mark.asyncio
async def test_completed_session_is_terminal(sessions):
    session = start(sessions, total_chunks=1, file_size=10)
    await sessions.record_chunk_received(session.upload_id, 1, 10)
    await sessions.mark_completing(session.upload_id)
    await sessions.mark_completed(session.upload_id, "release-1")

    assert session.status == SessionStatus.COMPLETED
    assert session.release_id == "release-1"
    assert session.finished_at is not None

    with pytest.raises(InvalidState):
        await sessions.mark_completing(session.upload_id)
    with pytest.raises(InvalidState):
        await sessions.abort(session.upload_id)

    # Unwinding never downgrades a terminal session
    await sessions.mark_aborted(session.upload_id)
    assert session.status == SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_mark_completed_requires_completing(sessions):
    session = start(sessions)
    with pytest.raises(InvalidState):
        await sessions.mark_completed(session.upload_id, "release-1")


@pytest.mark.asyncio
async def test_abort_open_session_is_idempotent(sessions):
    session = start(sessions)

    await sessions.abort(session.upload_id)
    await sessions.abort(session.upload_id)

    assert session.status == SessionStatus.ABORTED
    with pytest.raises(InvalidState):
        await sessions.record_chunk_received(session.upload_id, 1, 10)


@pytest.mark.asyncio
async def test_mark_aborted_unknown_session_is_noop(sessions):
    assert await sessions.mark_aborted("does-not-exist") is None


@pytest.mark.asyncio
async def test_expired_session_is_never_resurrected(sessions, clock):
    session = start(sessions)
    await sessions.record_chunk_received(session.upload_id, 1, 100)

    clock.advance(seconds=3600)

    with pytest.raises(SessionExpired):
        await sessions.record_chunk_received(session.upload_id, 2, 100)
    with pytest.raises(SessionExpired):
        await sessions.mark_completing(session.upload_id)
    with pytest.raises(SessionExpired):
        sessions.get_session(session.upload_id)
    assert session.status == SessionStatus.EXPIRED


def test_expired_is_a_not_found(sessions, clock):
    session = start(sessions)
    clock.advance(hours=2)
    with pytest.raises(SessionNotFound):
        sessions.get_session(session.upload_id)


def test_expire_overdue_and_sweep_candidates(sessions, clock):
    stale = start(sessions)
    clock.advance(minutes=30)
    fresh = start(sessions)
    clock.advance(minutes=31)

    assert sessions.expire_overdue() == [stale.upload_id]
    assert fresh.status == SessionStatus.OPEN

    grace = timedelta(minutes=5)
    assert sessions.sweep_candidates(grace) == []
    clock.advance(minutes=5)
    assert sessions.sweep_candidates(grace) == [stale.upload_id]

    sessions.remove(stale.upload_id)
    assert sessions.known_ids() == {fresh.upload_id}
