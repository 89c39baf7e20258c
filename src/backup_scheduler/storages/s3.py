import asyncio
import logging
import posixpath
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backup_scheduler.config import S3Config
from backup_scheduler.errors import CleanupError, StorageError, UploadError

logger = logging.getLogger(__name__)

_DELETE_BATCH = 1000


class S3Storage:
    """
    Backup storage on AWS S3 or any S3-compatible service (MinIO, LocalStack).

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(self, config: S3Config, client: Optional[Any] = None):
        self.bucket = config.bucket
        self.base_path = config.base_path.strip("/")
        self.client = client if client is not None else self._build_client(config)

    @staticmethod
    def _build_client(config: S3Config) -> Any:
        client_kwargs = {
            "service_name": "s3",
            "config": Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if config.endpoint else "auto"},
            ),
        }
        if config.credentials.region:
            client_kwargs["region_name"] = config.credentials.region
        if config.endpoint:
            client_kwargs["endpoint_url"] = config.endpoint
        if config.credentials.access_key and config.credentials.secret_key:
            client_kwargs["aws_access_key_id"] = config.credentials.access_key
            client_kwargs["aws_secret_access_key"] = config.credentials.secret_key
        return boto3.client(**client_kwargs)

    def job_prefix(self, job_name: str) -> str:
        return posixpath.join(self.base_path, job_name) + "/" if self.base_path else f"{job_name}/"

    def object_key(self, job_name: str, filename: str, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(timezone.utc)
        return f"{self.job_prefix(job_name)}{when.strftime('%Y/%m/%d')}/{filename}"

    def location(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def upload(self, job_name: str, path: Path) -> str:
        key = self.object_key(job_name, Path(path).name)
        logger.info("Uploading %s to s3://%s/%s", path, self.bucket, key)
        try:
            await asyncio.to_thread(self.client.upload_file, str(path), self.bucket, key)
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(f"failed to upload to S3: {e}") from e
        location = self.location(key)
        logger.info("Upload for job %s completed: %s", job_name, location)
        return location

    async def age_out(self, job_name: str, retention: timedelta) -> int:
        cutoff = datetime.now(timezone.utc) - retention
        prefix = self.job_prefix(job_name)
        try:
            return await asyncio.to_thread(self._delete_older_than, prefix, cutoff)
        except (BotoCoreError, ClientError) as e:
            raise CleanupError(f"failed to clean up old backups: {e}") from e

    def _delete_older_than(self, prefix: str, cutoff: datetime) -> int:
        expired: List[dict] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                if obj["LastModified"] < cutoff:
                    expired.append({"Key": obj["Key"]})

        if not expired:
            logger.info("No old backups to clean up under %s", prefix)
            return 0

        for start in range(0, len(expired), _DELETE_BATCH):
            batch = expired[start:start + _DELETE_BATCH]
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": batch, "Quiet": True},
            )
            errors = response.get("Errors") or []
            if errors:
                raise CleanupError(f"failed to delete {len(errors)} old backup(s), first: {errors[0].get('Key')}")

        logger.info("Cleaned up %d old backup(s) under %s", len(expired), prefix)
        return len(expired)

    async def test_connection(self) -> None:
        try:
            await asyncio.to_thread(self.client.list_objects_v2, Bucket=self.bucket, MaxKeys=1)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 connection test failed: {e}") from e
