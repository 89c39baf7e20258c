from datetime import timedelta
from typing import Callable

import pytest

from backup_scheduler.config import GlobalConfig, TimeoutConfig
from backup_scheduler.coordinator import RunCoordinator
from backup_scheduler.domain import DatabaseKind
from backup_scheduler.executor_factory import JobExecutorFactory
from backup_scheduler.gate import ConcurrencyGate
from backup_scheduler.status import StatusTable

from fakes import FakeStorage, RecordingMetrics, RecordingNotifier, ScriptedExecutor


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def status() -> StatusTable:
    return StatusTable()


@pytest.fixture
def coordinator_factory(tmp_path, executor, storage, notifier, metrics, status) -> Callable[..., RunCoordinator]:
    def build(
        capacity: int = 2,
        backup_timeout: timedelta = timedelta(seconds=30),
        notification_timeout: timedelta = timedelta(seconds=30),
    ) -> RunCoordinator:
        config = GlobalConfig(
            temp_dir=tmp_path / "backups",
            max_parallel_strategies=capacity,
            timeout=TimeoutConfig(backup=backup_timeout, notification=notification_timeout),
        )
        factory = JobExecutorFactory(config)
        factory.register(DatabaseKind.POSTGRES, executor)
        return RunCoordinator(
            config=config,
            executors=factory,
            storage=storage,
            notifier=notifier,
            status=status,
            gate=ConcurrencyGate(capacity),
            metrics=metrics,
        )

    return build
