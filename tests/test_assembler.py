"""
Tests for streaming assembly of chunks into one stored blob.
"""

import asyncio

import pytest

from release_pipeline.core.exceptions import IncompleteUpload, StorageWriteError
from release_pipeline.services import ReleaseAssembler
from release_pipeline.services.assembler import AssemblyCancelled, ChunkStreamReader

from conftest import sha256


def write_chunks(chunk_store, upload_id, parts):
    for number, data in enumerate(parts, start=1):
        chunk_store.write_chunk(upload_id, number, data)


def test_reader_streams_chunks_in_order(chunk_store):
    write_chunks(chunk_store, "up-1", [b"aaaa", b"bb", b"cccccc"])
    reader = ChunkStreamReader(chunk_store, "up-1", 3)

    out = bytearray()
    while True:
        buf = reader.read(3)
        if not buf:
            break
        assert len(buf) <= 3
        out.extend(buf)
    reader.close()

    assert bytes(out) == b"aaaabbcccccc"
    assert reader.digest.size == 12
    assert reader.digest.hexdigest() == sha256(b"aaaabbcccccc")


def test_reader_cancel_stops_next_read(chunk_store):
    write_chunks(chunk_store, "up-1", [b"abc"])
    reader = ChunkStreamReader(chunk_store, "up-1", 1)

    reader.cancel()

    with pytest.raises(AssemblyCancelled):
        reader.read(10)


def test_reader_raises_when_chunk_vanishes(chunk_store):
    write_chunks(chunk_store, "up-1", [b"abc", b"def"])
    reader = ChunkStreamReader(chunk_store, "up-1", 2)
    assert reader.read(3) == b"abc"

    chunk_store.chunk_path("up-1", 2).unlink()

    with pytest.raises(IncompleteUpload):
        while reader.read(3):
            pass
    reader.close()


@pytest.mark.asyncio
async def test_assemble_and_upload(chunk_store, storage, fake_minio):
    write_chunks(chunk_store, "up-1", [b"first-", b"second-", b"third"])

    blob = await ReleaseAssembler(chunk_store, storage).assemble_and_upload(
        "up-1", 3, "games/g/versions/windows/1.0/up-1/game.zip", "application/zip"
    )

    expected = b"first-second-third"
    assert blob.size == len(expected)
    assert blob.hash == sha256(expected)
    assert blob.storage_url == "test-releases/games/g/versions/windows/1.0/up-1/game.zip"
    assert fake_minio.objects[blob.blob_key] == (expected, "application/zip")


@pytest.mark.asyncio
async def test_missing_chunk_fails_before_any_write(chunk_store, storage, fake_minio):
    write_chunks(chunk_store, "up-1", [b"a", b"b"])
    chunk_store.chunk_path("up-1", 1).unlink()

    with pytest.raises(IncompleteUpload) as exc_info:
        await ReleaseAssembler(chunk_store, storage).assemble_and_upload("up-1", 2, "k")

    assert exc_info.value.missing_chunks == [1]
    assert fake_minio.put_calls == 0


@pytest.mark.asyncio
async def test_storage_rejection_is_not_retried(chunk_store, storage, fake_minio):
    write_chunks(chunk_store, "up-1", [b"abc"])
    fake_minio.fail_puts = True

    with pytest.raises(StorageWriteError):
        await ReleaseAssembler(chunk_store, storage).assemble_and_upload("up-1", 1, "k")

    assert fake_minio.put_calls == 1


@pytest.mark.asyncio
async def test_cancellation_aborts_in_flight_write(chunk_store, storage, fake_minio):
    write_chunks(chunk_store, "up-1", [b"abc", b"def"])
    fake_minio.release_parts.clear()

    task = asyncio.create_task(
        ReleaseAssembler(chunk_store, storage).assemble_and_upload("up-1", 2, "k")
    )
    assert await asyncio.to_thread(fake_minio.part_started.wait, 5)

    task.cancel()
    await asyncio.sleep(0.05)
    fake_minio.release_parts.set()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert "k" not in fake_minio.objects
