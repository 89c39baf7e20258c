from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from backup_scheduler.config import S3Config
from backup_scheduler.errors import CleanupError, StorageError, UploadError
from backup_scheduler.storages import S3Storage


def client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, operation)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def storage(client: MagicMock) -> S3Storage:
    return S3Storage(S3Config(bucket="backups", base_path="/database-backups/"), client=client)


def test_key_layout(storage: S3Storage):
    when = datetime(2024, 2, 3, tzinfo=timezone.utc)
    assert storage.job_prefix("main") == "database-backups/main/"
    assert storage.object_key("main", "main-20240203.sql.gz", when) == "database-backups/main/2024/02/03/main-20240203.sql.gz"
    assert storage.location("k") == "s3://backups/k"


def test_empty_base_path(client: MagicMock):
    storage = S3Storage(S3Config(bucket="b", base_path=""), client=client)
    assert storage.job_prefix("main") == "main/"


@pytest.mark.asyncio
async def test_upload(storage: S3Storage, client: MagicMock, tmp_path):
    artifact = tmp_path / "main-1.sql.gz"
    artifact.write_bytes(b"x")

    location = await storage.upload("main", artifact)

    client.upload_file.assert_called_once()
    filename, bucket, key = client.upload_file.call_args.args
    assert filename == str(artifact)
    assert bucket == "backups"
    assert key.startswith("database-backups/main/")
    assert key.endswith("/main-1.sql.gz")
    assert location == f"s3://backups/{key}"


@pytest.mark.asyncio
async def test_upload_failure(storage: S3Storage, client: MagicMock, tmp_path):
    client.upload_file.side_effect = client_error("PutObject")
    with pytest.raises(UploadError):
        await storage.upload("main", tmp_path / "x.sql.gz")


@pytest.mark.asyncio
async def test_age_out_deletes_only_expired_objects(storage: S3Storage, client: MagicMock):
    now = datetime.now(timezone.utc)
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [
            {"Key": "database-backups/main/old.sql.gz", "LastModified": now - timedelta(days=40)},
            {"Key": "database-backups/main/new.sql.gz", "LastModified": now - timedelta(days=1)},
        ]},
        {"Contents": [
            {"Key": "database-backups/main/older.sql.gz", "LastModified": now - timedelta(days=90)},
        ]},
        {},
    ]
    client.get_paginator.return_value = paginator
    client.delete_objects.return_value = {}

    deleted = await storage.age_out("main", timedelta(days=30))

    assert deleted == 2
    paginator.paginate.assert_called_once_with(Bucket="backups", Prefix="database-backups/main/")
    objects = client.delete_objects.call_args.kwargs["Delete"]["Objects"]
    assert objects == [
        {"Key": "database-backups/main/old.sql.gz"},
        {"Key": "database-backups/main/older.sql.gz"},
    ]


@pytest.mark.asyncio
async def test_age_out_nothing_to_delete(storage: S3Storage, client: MagicMock):
    client.get_paginator.return_value.paginate.return_value = [{}]

    assert await storage.age_out("main", timedelta(days=30)) == 0
    client.delete_objects.assert_not_called()


@pytest.mark.asyncio
async def test_age_out_failure(storage: S3Storage, client: MagicMock):
    client.get_paginator.return_value.paginate.side_effect = client_error("ListObjectsV2")
    with pytest.raises(CleanupError):
        await storage.age_out("main", timedelta(days=30))


@pytest.mark.asyncio
async def test_age_out_reports_partial_delete(storage: S3Storage, client: MagicMock):
    old = datetime.now(timezone.utc) - timedelta(days=60)
    client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "database-backups/main/a", "LastModified": old}]}
    ]
    client.delete_objects.return_value = {"Errors": [{"Key": "database-backups/main/a"}]}

    with pytest.raises(CleanupError, match="failed to delete 1"):
        await storage.age_out("main", timedelta(days=30))


@pytest.mark.asyncio
async def test_connection(storage: S3Storage, client: MagicMock):
    await storage.test_connection()
    client.list_objects_v2.assert_called_once_with(Bucket="backups", MaxKeys=1)

    client.list_objects_v2.side_effect = client_error("ListObjectsV2")
    with pytest.raises(StorageError):
        await storage.test_connection()


def test_client_for_custom_endpoint():
    storage = S3Storage(S3Config(
        bucket="b",
        endpoint="http://minio:9000",
        credentials={"access_key": "minio", "secret_key": "minio123", "region": "us-east-1"},
    ))
    assert storage.client.meta.endpoint_url == "http://minio:9000"
    assert storage.client.meta.region_name == "us-east-1"
