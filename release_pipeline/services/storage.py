"""
MinIO storage service for published release blobs
"""
import logging
from datetime import timedelta
from typing import BinaryIO, Optional

from minio import Minio
from minio.error import MinioException, S3Error

from ..core.config import settings
from ..core.exceptions import InvalidArgument, StorageWriteError

logger = logging.getLogger(__name__)

MAX_PRESIGNED_EXPIRY_SECONDS = 7 * 24 * 3600  # S3 limit: 7 days
PUT_PART_SIZE = 10 * 1024 * 1024


class StorageService:
    """
    Object storage service using MinIO (S3-compatible).

    Key features:
    - Streaming uploads from any file-like object (constant memory)
    - Idempotent deletes, so compensating deletes can be repeated safely
    - Presigned download urls for catalog consumers

    All client calls are blocking; async callers run them in an executor.
    """

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        self.client = client or Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE
        )
        self.bucket = bucket or settings.MINIO_BUCKET
        logger.info(f"🗄️  MinIO client initialized: {self.bucket}")

    def ensure_bucket_exists(self):
        """Create bucket if it doesn't exist"""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"✅ Created MinIO bucket: {self.bucket}")
            else:
                logger.info(f"✅ MinIO bucket exists: {self.bucket}")
        except S3Error as e:
            logger.error(f"❌ Failed to create bucket: {e}")
            raise

    def storage_url(self, storage_key: str) -> str:
        """Bucket-qualified location recorded in the catalog"""
        return f"{self.bucket}/{storage_key}"

    def put_stream(
        self,
        storage_key: str,
        stream: BinaryIO,
        length: int,
        content_type: str = "application/octet-stream"
    ) -> str:
        """
        Upload ``length`` bytes read from ``stream``.

        The stream is consumed with ``read(n)`` in parts, so it never has to
        fit in memory. Any MinIO failure is raised as StorageWriteError and is
        not retried here. Errors raised by the stream itself propagate as-is.

        Returns:
            Storage url of the written object
        """
        try:
            self.client.put_object(
                self.bucket,
                storage_key,
                stream,
                length=length,
                content_type=content_type,
                part_size=PUT_PART_SIZE
            )
        except MinioException as e:
            logger.error(f"❌ Failed to upload {storage_key}: {e}")
            raise StorageWriteError(f"Object store rejected write of '{storage_key}': {e}") from e

        logger.info(f"✅ Uploaded {length} bytes to {storage_key}")
        return self.storage_url(storage_key)

    def exists(self, storage_key: str) -> bool:
        """Check if object exists in storage"""
        try:
            self.client.stat_object(self.bucket, storage_key)
            return True
        except S3Error:
            return False

    def delete(self, storage_key: str) -> None:
        """
        Delete object from storage.

        Removing a missing key is not an error (S3 semantics), which keeps
        compensating deletes idempotent.
        """
        try:
            self.client.remove_object(self.bucket, storage_key)
            logger.info(f"🗑️  Deleted {storage_key}")
        except S3Error as e:
            logger.error(f"❌ Failed to delete {storage_key}: {e}")
            raise

    def presigned_url(self, storage_key: str, expiry_seconds: Optional[int] = None) -> str:
        """Presigned GET url, valid between 1 second and 7 days"""
        expiry_seconds = expiry_seconds or settings.PRESIGNED_URL_EXPIRY_SECONDS
        if expiry_seconds < 1 or expiry_seconds > MAX_PRESIGNED_EXPIRY_SECONDS:
            raise InvalidArgument(
                f"Expiry must be between 1 and {MAX_PRESIGNED_EXPIRY_SECONDS} seconds"
            )
        return self.client.presigned_get_object(
            self.bucket,
            storage_key,
            expires=timedelta(seconds=expiry_seconds)
        )
