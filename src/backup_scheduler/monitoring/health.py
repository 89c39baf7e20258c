import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from backup_scheduler import __version__
from backup_scheduler.config import MonitoringConfig
from backup_scheduler.monitoring.metrics import PrometheusMetrics
from backup_scheduler.notifications.protocol import Notifier
from backup_scheduler.status import StatusTable
from backup_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)


class HealthServer:
    """
    HTTP surface for health checks and Prometheus scraping.

    The health document reports the last known status of every job and
    whether storage and Slack are reachable. It answers 503 when degraded.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        status: StatusTable,
        job_count: int,
        storage: Optional[Storage] = None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[PrometheusMetrics] = None,
        host: str = "0.0.0.0",
    ):
        self.config = config
        self.status = status
        self.job_count = job_count
        self.storage = storage
        self.notifier = notifier
        self.metrics = metrics
        self.host = host
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.config.health_check.path, self.handle_health)
        if self.config.metrics.enabled and self.metrics is not None:
            app.router.add_get(self.config.metrics.path, self.handle_metrics)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        ports: List[int] = [self.config.health_check.port]
        if self.config.metrics.enabled and self.config.metrics.port not in ports:
            ports.append(self.config.metrics.port)
        for port in ports:
            await web.TCPSite(self._runner, self.host, port).start()
        logger.info("Monitoring HTTP server listening on port(s) %s", ", ".join(map(str, ports)))

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def _storage_status(self) -> str:
        if self.storage is None:
            return "disabled"
        try:
            await self.storage.test_connection()
        except Exception as e:
            logger.warning("S3 health check failed: %s", e)
            return "error"
        return "ok"

    async def _slack_status(self) -> str:
        if self.notifier is None or not getattr(self.notifier, "enabled", True):
            return "disabled"
        try:
            await self.notifier.test_connection()
        except Exception as e:
            if "missing_scope" in str(e):
                logger.debug("Slack health check shows limited permissions")
                return "limited"
            logger.warning("Slack health check failed: %s", e)
            return "error"
        return "ok"

    async def health_document(self) -> Dict[str, Any]:
        s3_status = await self._storage_status()
        slack_status = await self._slack_status()
        overall = "degraded" if "error" in (s3_status, slack_status) else "healthy"

        statuses = {
            name: status.model_dump(mode="json", exclude={"job_name"}, exclude_none=True)
            for name, status in self.status.snapshot().items()
        }
        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "jobs": {
                "total": self.job_count,
                "last_backup_status": statuses,
            },
            "s3_connectivity": s3_status,
            "slack_connectivity": slack_status,
        }

    async def handle_health(self, request: web.Request) -> web.Response:
        document = await self.health_document()
        status_code = 200 if document["status"] == "healthy" else 503
        return web.json_response(document, status=status_code)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        response = web.Response(body=self.metrics.render())
        response.content_type = CONTENT_TYPE_LATEST.split(";")[0]
        response.charset = "utf-8"
        return response
