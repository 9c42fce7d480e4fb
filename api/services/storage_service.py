"""
AWS S3 storage service for property images.
"""

import mimetypes
from typing import Optional

import structlog

from config import settings

logger = structlog.get_logger(__name__)


class StorageService:
    """Service for AWS S3 storage operations."""

    def __init__(self):
        self.bucket = settings.aws_s3_bucket
        self.region = settings.aws_region
        self._client = None

    async def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            import aioboto3
            session = aioboto3.Session()
            self._client = await session.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
            ).__aenter__()
        return self._client

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    @staticmethod
    def property_image_key(property_id: str, image_hash: str, filename: Optional[str], content_type: Optional[str]) -> str:
        """S3 key for a property image, named by its content hash."""
        extension = ""
        if filename and "." in filename:
            extension = "." + filename.rsplit(".", 1)[1].lower()
        elif content_type:
            extension = mimetypes.guess_extension(content_type) or ""
        return f"properties/{property_id}/{image_hash}{extension}"

    async def upload_property_image(
        self,
        data: bytes,
        property_id: str,
        image_hash: str,
        filename: Optional[str] = None,
        content_type: str = "image/jpeg",
    ) -> str:
        """
        Upload a property image to S3 and return its public URL.

        Args:
            data: Image bytes
            property_id: Owning property
            image_hash: SHA-256 of the bytes (used as the object name)
            filename: Original filename, for the extension
            content_type: MIME type of the image

        Returns:
            Public URL of uploaded file
        """
        key = self.property_image_key(property_id, image_hash, filename, content_type)

        try:
            client = await self._get_client()

            await client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )

            url = self.public_url(key)

            logger.info(
                "property_image_uploaded",
                key=key,
                size=len(data),
            )

            return url

        except Exception as e:
            logger.error("s3_upload_error", key=key, error=str(e))
            raise

    async def close(self) -> None:
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None


# Singleton instance
storage_service = StorageService()
