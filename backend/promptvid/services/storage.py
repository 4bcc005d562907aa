"""S3-compatible object storage for final videos (AWS S3, Cloudflare R2, MinIO)."""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.client import Config

from promptvid.config import StorageConfig
from promptvid.services.base import ObjectStorage

logger = logging.getLogger(__name__)


class S3Storage(ObjectStorage):
    """Upload files to one bucket through boto3.

    The boto3 client is created lazily; uploads run in a worker thread.
    """

    def __init__(self, config: StorageConfig, client: Optional[Any] = None):
        self.config = config
        self._client = client

    @property
    def client(self):
        if self._client is None:
            session = boto3.session.Session()
            self._client = session.client(
                "s3",
                endpoint_url=self.config.endpoint_url or None,
                aws_access_key_id=self.config.access_key_id or None,
                aws_secret_access_key=self.config.secret_access_key or None,
                # R2 and most S3-compatible stores require sigv4
                config=Config(signature_version="s3v4"),
                region_name=self.config.region or None,
            )
        return self._client

    async def upload_file(self, key: str, local_path: Path) -> str:
        """Upload ``local_path`` under ``key``. Returns the key.

        Raises:
            FileNotFoundError: local_path does not exist.
            botocore.exceptions.BotoCoreError / ClientError: upload failed.
        """
        local_path = Path(local_path)
        if not local_path.exists():
            raise FileNotFoundError(f"Nothing to upload at {local_path}")

        content_type = mimetypes.guess_type(local_path.name)[0] or "application/octet-stream"
        logger.info(f"Uploading {local_path} to s3://{self.config.bucket}/{key}")
        await asyncio.to_thread(
            self.client.upload_file,
            str(local_path),
            self.config.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
        )
        return key
