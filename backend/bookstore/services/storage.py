"""
Storage Service - S3-compatible object storage

Holds shipping labels and other carrier documents. Supports AWS S3,
Cloudflare R2, MinIO and other S3-compatible services.
"""
import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bookstore.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of a file upload."""
    success: bool
    url: Optional[str] = None
    key: Optional[str] = None
    error: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


class StorageService:
    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self._bucket = bucket or settings.S3_BUCKET
        self._region = settings.S3_REGION

    @property
    def client(self):
        """Lazy-load S3 client."""
        if self._client is None:
            config = Config(
                signature_version='s3v4',
                retries={'max_attempts': 3, 'mode': 'standard'}
            )

            client_kwargs = {
                'service_name': 's3',
                'region_name': self._region,
                'aws_access_key_id': settings.S3_ACCESS_KEY,
                'aws_secret_access_key': settings.S3_SECRET_KEY,
                'config': config,
            }
            if settings.S3_ENDPOINT:
                client_kwargs['endpoint_url'] = settings.S3_ENDPOINT

            self._client = boto3.client(**client_kwargs)

        return self._client

    def is_configured(self) -> bool:
        # Missing access keys are allowed: boto3 falls back to its credential chain
        return bool(self._bucket)

    def _get_public_url(self, key: str) -> str:
        if settings.S3_PUBLIC_URL:
            return f"{settings.S3_PUBLIC_URL.rstrip('/')}/{key}"
        if settings.S3_ENDPOINT:
            return f"{settings.S3_ENDPOINT.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    @staticmethod
    def _generate_key(folder: str, filename: str, content: bytes) -> str:
        content_hash = hashlib.md5(content).hexdigest()[:8]
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d')
        safe_filename = "".join(c for c in filename if c.isalnum() or c in '.-_').lower()
        return f"{folder.strip('/')}/{timestamp}_{content_hash}_{safe_filename}"

    async def upload_buffer(
        self,
        content: bytes,
        name: str,
        folder: Optional[str] = None,
        content_type: str = "application/pdf",
    ) -> UploadResult:
        """Upload bytes under folder/ and return the public URL."""
        if not self.is_configured():
            return UploadResult(success=False, error="S3 storage not configured")

        key = self._generate_key(folder or settings.LABEL_STORAGE_FOLDER, name, content)
        try:
            # Note: No ACL - bucket policy handles public access
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                CacheControl="private, max-age=86400",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Upload failed for {key}: {e}")
            return UploadResult(success=False, key=key, error=str(e))

        url = self._get_public_url(key)
        logger.info(f"Uploaded: {key}")
        return UploadResult(
            success=True,
            url=url,
            key=key,
            content_type=content_type,
            size_bytes=len(content),
        )
