"""
S3 compatible object storage (MinIO) for rendered certificates and attachments.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from config.settings import Settings, get_settings
from .exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}


class UploadResult(BaseModel):
    """Location of an uploaded object."""
    file_url: str
    file_name: str
    file_size: int


def safe_object_name(name: str) -> str:
    """Replaces characters that would create nested keys or awkward URLs."""
    return name.replace(" ", "-").replace("/", "-")


class ObjectStorage:
    """Stores objects in one bucket and addresses them by public URL."""

    def __init__(self, settings: Optional[Settings] = None, client=None):
        """
        Initializes the storage.

        Args:
            settings: Settings with MinIO endpoint, credentials and bucket
            client: Ready boto3 S3 client, created from settings when omitted
        """
        self.settings = settings or get_settings()
        self.bucket = self.settings.minio_bucket
        self.base_url = self.settings.storage_base_url
        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.base_url,
            region_name=self.settings.minio_region,
            aws_access_key_id=self.settings.minio_user,
            aws_secret_access_key=self.settings.minio_password,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    def ensure_bucket(self):
        """Creates the bucket when it does not exist yet."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code not in ("404", "NoSuchBucket", "NotFound"):
                raise StorageError(f"Failed to check bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to check bucket {self.bucket}: {e}") from e

        try:
            self.client.create_bucket(Bucket=self.bucket)
            logger.info(f"Bucket {self.bucket} created")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to create bucket {self.bucket}: {e}") from e

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{key}"

    def key_from_url(self, url: str) -> str:
        """
        Extracts the object key from a URL produced by this storage.

        Raises:
            ValidationError: If the URL does not point into the bucket
        """
        prefix = f"{self.base_url}/{self.bucket}/"
        if not url or not url.startswith(prefix) or len(url) == len(prefix):
            raise ValidationError(f"URL is not an object of bucket {self.bucket}: {url}")
        return url[len(prefix):]

    def _put(self, key: str, data: bytes, content_type: str) -> UploadResult:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentLength=len(data),
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e

        logger.info(f"Uploaded {key} ({len(data)} bytes)")
        return UploadResult(file_url=self.object_url(key), file_name=key, file_size=len(data))

    def upload(self, folder: str, data: bytes, content_type: str) -> UploadResult:
        """
        Uploads an attachment.

        Args:
            folder: Key prefix
            data: File content
            content_type: MIME type, one of ALLOWED_CONTENT_TYPES

        Returns:
            UploadResult: Public URL, key and size

        Raises:
            ValidationError: Unsupported type or file too large
            StorageError: Upload failed
        """
        extension = ALLOWED_CONTENT_TYPES.get(content_type)
        if extension is None:
            raise ValidationError(
                f"tipe file tidak diizinkan: {content_type}. Hanya JPG, PNG, dan PDF yang diperbolehkan"
            )
        if len(data) > MAX_FILE_SIZE:
            raise ValidationError("ukuran file melebihi batas maksimal 10MB")

        key = f"{folder}/{datetime.now():%Y%m%d}-{uuid.uuid4().hex[:8]}{extension}"
        return self._put(key, data, content_type)

    def upload_pdf(self, folder: str, data: bytes, name: str) -> UploadResult:
        """
        Uploads a rendered PDF under a readable name.

        The key is ``<folder>/<name>-<8 hex chars>.pdf`` with spaces and
        slashes in the name replaced by dashes.
        """
        key = f"{folder}/{safe_object_name(name)}-{uuid.uuid4().hex[:8]}.pdf"
        return self._put(key, data, "application/pdf")

    def download(self, url: str) -> bytes:
        """
        Fetches an object by its public URL.

        Raises:
            StorageError: Download failed
        """
        key = self.key_from_url(url)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to download {key}: {e}") from e

    def delete(self, url: str):
        """Deletes an object by its public URL."""
        key = self.key_from_url(url)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        logger.info(f"Deleted {key}")

    def health_check(self) -> bool:
        """Checks that the bucket is reachable."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Object storage unavailable: {e}")
            return False


_object_storage: Optional[ObjectStorage] = None


def get_object_storage() -> ObjectStorage:
    """Returns the process wide object storage."""
    global _object_storage
    if _object_storage is None:
        _object_storage = ObjectStorage()
    return _object_storage
