"""S3-compatible raw document storage using MinIO.

Raw submitted files are stored once, before extraction, under
``<tenant_id>/<document_id>/original<ext>``; the object path becomes the
document's storage reference.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import mimetypes

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docintake.shared.config import Settings

logger = logging.getLogger(__name__)


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None

    @property
    def storage_ref(self) -> str | None:
        if not self.success or self.object_name is None:
            return None
        return f"{self.bucket}/{self.object_name}"


class StorageService:
    """S3-compatible object storage service.

    Provides document storage with data sovereignty support
    through on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_exists_cache: set[str] = set()

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage service is enabled and configured."""
        if not self.settings.storage_enabled:
            return False

        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if MinIO server responds to list_buckets
        """
        if not self.is_available():
            return False

        try:
            client = self._get_client()
            client.list_buckets()
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self, bucket: str) -> None:
        if bucket in self._bucket_exists_cache:
            return

        client = self._get_client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_exists_cache.add(bucket)

    @staticmethod
    def object_name_for(tenant_id: str, document_id: str, file_name: str | None, content_type: str) -> str:
        """Object path of a raw document."""
        suffix = ""
        if file_name and "." in file_name:
            suffix = "." + file_name.rsplit(".", 1)[1].lower()
        else:
            suffix = mimetypes.guess_extension(content_type) or ".bin"
        return f"{tenant_id}/{document_id}/original{suffix}"

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, bucket: str, object_name: str, data: bytes, content_type: str) -> str:
        client = self._get_client()
        self._ensure_bucket(bucket)
        result = client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return str(result.etag)

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str | None = None,
        bucket: str | None = None,
    ) -> StorageResult:
        """Upload bytes to storage.

        Args:
            data: Bytes to upload
            object_name: Target object name in storage
            content_type: MIME type (guessed from the name if not provided)
            bucket: Target bucket (defaults to settings.storage_bucket)

        Returns:
            StorageResult with upload details
        """
        bucket = bucket or self.settings.storage_bucket
        if content_type is None:
            content_type = mimetypes.guess_type(object_name)[0] or "application/octet-stream"

        try:
            etag = self._put(bucket, object_name, data, content_type)
            logger.info(f"Uploaded {object_name} to {bucket} ({len(data)} bytes)")
            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
                etag=etag,
                size=len(data),
            )
        except S3Error as e:
            logger.error(f"S3 error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )

    def download_bytes(self, storage_ref: str) -> bytes | None:
        """Fetch a stored raw document by its ``bucket/object`` reference.

        Returns:
            Content bytes, or None if the object cannot be read
        """
        bucket, _, object_name = storage_ref.partition("/")
        try:
            response = self._get_client().get_object(bucket_name=bucket, object_name=object_name)
            try:
                return bytes(response.read())
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            logger.error(f"S3 error reading {storage_ref}: {e}")
            return None
