from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import test_utils

from backup_scheduler import __version__
from backup_scheduler.config import MonitoringConfig
from backup_scheduler.errors import NotificationError, StorageError
from backup_scheduler.monitoring import HealthServer, PrometheusMetrics
from backup_scheduler.status import StatusTable

T0 = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)


class FakeStorage:
    def __init__(self, error: Exception = None):
        self.error = error

    async def test_connection(self) -> None:
        if self.error:
            raise self.error


class FakeNotifier:
    def __init__(self, error: Exception = None, enabled: bool = True):
        self.error = error
        self.enabled = enabled

    async def test_connection(self) -> None:
        if self.error:
            raise self.error


def server(storage=None, notifier=None, metrics=None) -> HealthServer:
    status = StatusTable()
    status.mark_finished("main", success=True, finished_at=T0, next_run=T0 + timedelta(days=1))
    status.mark_finished("shop", success=False, finished_at=T0, error="boom")
    return HealthServer(
        MonitoringConfig(),
        status,
        job_count=2,
        storage=storage or FakeStorage(),
        notifier=notifier or FakeNotifier(),
        metrics=metrics,
    )


@pytest.mark.asyncio
async def test_healthy():
    async with test_utils.TestClient(test_utils.TestServer(server().build_app())) as client:
        response = await client.get("/health")
        assert response.status == 200
        body = await response.json()

    assert body["status"] == "healthy"
    assert body["version"] == __version__
    assert body["s3_connectivity"] == "ok"
    assert body["slack_connectivity"] == "ok"
    assert body["jobs"]["total"] == 2
    statuses = body["jobs"]["last_backup_status"]
    assert statuses["main"]["state"] == "success"
    assert statuses["shop"]["state"] == "failed"
    assert statuses["shop"]["error"] == "boom"


@pytest.mark.asyncio
async def test_degraded_when_storage_unreachable():
    health = server(storage=FakeStorage(StorageError("no route to host")))
    async with test_utils.TestClient(test_utils.TestServer(health.build_app())) as client:
        response = await client.get("/health")
        assert response.status == 503
        body = await response.json()

    assert body["status"] == "degraded"
    assert body["s3_connectivity"] == "error"


@pytest.mark.asyncio
async def test_slack_missing_scope_is_limited_not_degraded():
    health = server(notifier=FakeNotifier(NotificationError("Slack conversations.info failed: missing_scope")))
    document = await health.health_document()

    assert document["status"] == "healthy"
    assert document["slack_connectivity"] == "limited"


@pytest.mark.asyncio
async def test_slack_disabled():
    document = await server(notifier=FakeNotifier(enabled=False)).health_document()
    assert document["slack_connectivity"] == "disabled"


@pytest.mark.asyncio
async def test_metrics_endpoint():
    metrics = PrometheusMetrics()
    metrics.record_run("main", timedelta(seconds=12), 4096, True)
    metrics.record_run("shop", timedelta(seconds=3), 0, False)

    async with test_utils.TestClient(test_utils.TestServer(server(metrics=metrics).build_app())) as client:
        response = await client.get("/metrics")
        assert response.status == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        text = await response.text()

    assert 'backup_success_total{strategy="main"} 1.0' in text
    assert 'backup_failures_total{strategy="shop"} 1.0' in text
    assert 'backup_size_bytes{strategy="main"} 4096.0' in text
    assert "backup_duration_seconds_bucket" in text


@pytest.mark.asyncio
async def test_metrics_endpoint_absent_without_metrics():
    async with test_utils.TestClient(test_utils.TestServer(server().build_app())) as client:
        response = await client.get("/metrics")
        assert response.status == 404
