import asyncio
import logging
from typing import Optional

from backup_scheduler.config import Settings
from backup_scheduler.coordinator import RunCoordinator
from backup_scheduler.domain import NotificationTarget
from backup_scheduler.executor_factory import JobExecutorFactory
from backup_scheduler.gate import ConcurrencyGate
from backup_scheduler.monitoring import HealthServer, MetricsSink, NullMetrics, PrometheusMetrics
from backup_scheduler.notifications import Notifier, SlackNotifier
from backup_scheduler.orchestrator import Orchestrator
from backup_scheduler.registry import JobRegistry
from backup_scheduler.status import StatusTable
from backup_scheduler.storages import S3Storage, Storage

logger = logging.getLogger(__name__)


class BackupService:
    """
    Wires every component from a loaded :class:`Settings` object.

    Collaborators can be injected, which is how the tests replace S3 and Slack.
    Must be constructed inside a running event loop.
    """

    def __init__(
        self,
        settings: Settings,
        storage: Optional[Storage] = None,
        notifier: Optional[Notifier] = None,
        executors: Optional[JobExecutorFactory] = None,
        metrics: Optional[MetricsSink] = None,
    ):
        defaults = settings.defaults
        self.settings = settings
        self.registry = JobRegistry.from_settings(settings)
        self.status = StatusTable()
        self.storage = storage if storage is not None else S3Storage(defaults.s3)
        self.notifier = notifier if notifier is not None else SlackNotifier(
            defaults.slack.bot_token, default_channel=defaults.slack.channel_id
        )
        if metrics is None:
            metrics = PrometheusMetrics() if defaults.monitoring.metrics.enabled else NullMetrics()
        self.metrics = metrics

        self.coordinator = RunCoordinator(
            config=defaults,
            executors=executors or JobExecutorFactory(defaults),
            storage=self.storage,
            notifier=self.notifier,
            status=self.status,
            gate=ConcurrencyGate(defaults.max_parallel),
            metrics=self.metrics,
            shutdown=asyncio.Event(),
        )
        self.orchestrator = Orchestrator(
            self.registry,
            self.coordinator,
            self.notifier,
            timezone=defaults.timezone,
            default_target=NotificationTarget(channel_id=defaults.slack.channel_id),
        )
        self.health = HealthServer(
            defaults.monitoring,
            self.status,
            job_count=len(self.registry),
            storage=self.storage,
            notifier=self.notifier,
            metrics=self.metrics if isinstance(self.metrics, PrometheusMetrics) else None,
        )

    async def start(self, with_health: bool = True) -> None:
        await self.orchestrator.start()
        if with_health:
            await self.health.start()
        logger.info("Backup service started with %d job(s)", len(self.registry))

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.health.stop()
        logger.info("Backup service stopped")
