"""Pytest configuration and fixtures for release pipeline tests."""

import hashlib
import threading
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from minio.error import MinioException, S3Error
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from release_pipeline.models import Base
from release_pipeline.services import (
    ChunkStore,
    ReleaseCatalogWriter,
    SessionJanitor,
    SessionManager,
    StorageService,
    UploadPipeline,
)


def _object_missing() -> S3Error:
    # S3Error's constructor differs between minio releases; only the type matters here
    return S3Error.__new__(S3Error)


class FakeMinio:
    """
    In-memory stand-in for ``minio.Minio`` exposing the calls the storage
    service makes. put_object consumes the stream part by part like the
    real client does.
    """

    def __init__(self):
        self.buckets = set()
        self.objects = {}
        self.removed = []
        self.fail_puts = False
        self.part_started = threading.Event()
        self.release_parts = threading.Event()
        self.release_parts.set()
        self.put_calls = 0

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def put_object(self, bucket, key, data, length, content_type="application/octet-stream", part_size=0):
        self.put_calls += 1
        if self.fail_puts:
            raise MinioException("boom")

        part_size = part_size or length
        body = bytearray()
        while len(body) < length:
            self.part_started.set()
            self.release_parts.wait(timeout=5)
            buf = data.read(min(part_size, length - len(body)))
            if not buf:
                break
            body.extend(buf)
        self.objects[key] = (bytes(body), content_type)

    def stat_object(self, bucket, key):
        if key not in self.objects:
            raise _object_missing()
        return {"size": len(self.objects[key][0])}

    def remove_object(self, bucket, key):
        self.removed.append(key)
        self.objects.pop(key, None)

    def presigned_get_object(self, bucket, key, expires=timedelta(days=7)):
        return f"http://minio.test/{bucket}/{key}?X-Amz-Expires={int(expires.total_seconds())}"


class FakeClock:
    """Manually advanced clock for expiry tests"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def split(data: bytes, parts: int) -> list[bytes]:
    """Split data into `parts` non-empty chunks"""
    base, extra = divmod(len(data), parts)
    chunks, offset = [], 0
    for i in range(parts):
        size = base + (1 if i < extra else 0)
        chunks.append(data[offset:offset + size])
        offset += size
    return chunks


@pytest.fixture
def fake_minio():
    return FakeMinio()


@pytest.fixture
def storage(fake_minio):
    return StorageService(client=fake_minio, bucket="test-releases")


@pytest.fixture
def chunk_store(tmp_path):
    return ChunkStore(root=str(tmp_path / "chunks"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(clock):
    return SessionManager(ttl_seconds=3600, clock=clock)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite catalog, fresh per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def catalog(session_maker):
    return ReleaseCatalogWriter(session_maker, archive_extensions=(".zip", ".7z", ".tar.gz"))


@pytest.fixture
def pipeline(sessions, chunk_store, storage, catalog):
    return UploadPipeline(sessions, chunk_store, storage, catalog, max_chunk_size=1024 * 1024)


@pytest.fixture
def janitor(sessions, chunk_store):
    return SessionJanitor(sessions, chunk_store, grace_seconds=300, interval_seconds=1)


@pytest.fixture
def upload_all(pipeline):
    """Start an upload and send every chunk; returns the session"""

    async def _upload(data: bytes, parts: int, file_hash=None, file_name="build.zip"):
        session = pipeline.start_upload(
            file_name, len(data), parts, "dev-1", "application/zip", file_hash
        )
        for number, chunk in enumerate(split(data, parts), start=1):
            await pipeline.upload_chunk(session.upload_id, number, len(chunk), chunk)
        return session

    return _upload
