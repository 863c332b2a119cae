"""Content store client (S3-compatible object storage: R2, MinIO, S3)."""
from __future__ import annotations

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from ..errors import StorageError

logger = structlog.get_logger()


class StorageService:
    """Upload, download and delete raw PDFs by object key; issue presigned upload URLs."""

    def __init__(self, bucket: str | None = None, client=None):
        self.bucket = bucket or settings.STORAGE_BUCKET
        self._client = client

    @property
    def client(self):
        """Get or create the S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                region_name=settings.STORAGE_REGION,
                aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY or None,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    def get_upload_url(self, key: str, expires_in: int | None = None) -> str:
        """Generate a pre-signed PUT URL for uploading a PDF."""
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentType": "application/pdf",
                },
                ExpiresIn=expires_in or settings.UPLOAD_URL_EXPIRES_IN,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to create upload URL", key=key, error=str(e))
            raise StorageError(f"Could not create upload URL: {e}") from e

    def upload_file(self, key: str, data: bytes) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/pdf",
            )
            logger.info("Uploaded file", key=key, size=len(data))
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to upload file", key=key, error=str(e))
            raise StorageError(f"Storage upload failed: {e}") from e

    def download_file(self, key: str) -> bytes:
        """Download an object. Failure here is fatal to the ingestion job."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to download file", key=key, error=str(e))
            raise StorageError(f"Storage download failed: {e}") from e

    def object_exists(self, key: str) -> bool:
        """HEAD the object. A missing key is False; any other failure raises."""
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            logger.error("Failed to check file", key=key, error=str(e))
            raise StorageError(f"Storage lookup failed: {e}") from e
        except BotoCoreError as e:
            logger.error("Failed to check file", key=key, error=str(e))
            raise StorageError(f"Storage lookup failed: {e}") from e

    def delete_file(self, key: str) -> bool:
        """Best-effort delete; failures are logged and reported as False."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            logger.info("Deleted file", key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("Failed to delete file", key=key, error=str(e))
            return False


# Singleton instance
storage_service = StorageService()
