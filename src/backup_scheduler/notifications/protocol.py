from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict

from backup_scheduler.domain.job import NotificationTarget
from backup_scheduler.domain.run import RunResult


class NotificationThread(BaseModel):
    """
    Handle grouping every message of one run (or one run-all invocation).
    """
    model_config = ConfigDict(frozen=True)

    channel: str
    ts: str


class Notifier(Protocol):
    """
    All methods must treat a missing thread as a no-op.
    """

    async def open_thread(self, job_names: List[str], target: NotificationTarget) -> Optional[NotificationThread]:
        ...

    async def progress(self, thread: Optional[NotificationThread], job_name: str, message: str) -> None:
        ...

    async def result(self, thread: Optional[NotificationThread], results: Sequence[RunResult], overall_success: bool) -> None:
        ...

    async def test_connection(self) -> None:
        ...


class NullNotifier:
    """
    Notifier used when notifications are disabled.
    """

    async def open_thread(self, job_names: List[str], target: NotificationTarget) -> Optional[NotificationThread]:
        return None

    async def progress(self, thread: Optional[NotificationThread], job_name: str, message: str) -> None:
        return None

    async def result(self, thread: Optional[NotificationThread], results: Sequence[RunResult], overall_success: bool) -> None:
        return None

    async def test_connection(self) -> None:
        return None
