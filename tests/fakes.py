import asyncio
from collections import defaultdict
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from backup_scheduler.domain import DatabaseKind, JobDefinition, NotificationTarget, RunResult
from backup_scheduler.errors import CleanupError, ExecutorError, UploadError
from backup_scheduler.executors.protocol import DumpOutcome, ProgressSink
from backup_scheduler.notifications.protocol import NotificationThread


def make_job(name: str, max_attempts: int = 3, schedule: str = "* * * * *") -> JobDefinition:
    return JobDefinition(
        name=name,
        database=DatabaseKind.POSTGRES,
        database_url=f"postgres://user:secret@db/{name}",
        schedule=schedule,
        retention=timedelta(days=7),
        max_attempts=max_attempts,
        notification=NotificationTarget(channel_id="C123"),
    )


class ScriptedExecutor:
    """
    Fails the first ``fail_first[job]`` attempts of a job with "mock error <n>", then succeeds.
    """

    def __init__(self, fail_first: Optional[Dict[str, int]] = None, delay: float = 0.0):
        self.fail_first = dict(fail_first or {})
        self.delay = delay
        self.release: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.events: List[tuple] = []
        self.active = 0
        self.max_active = 0
        self.active_by_job: Dict[str, int] = defaultdict(int)
        self.max_active_by_job: Dict[str, int] = defaultdict(int)
        self._attempts: Dict[str, int] = defaultdict(int)

    async def execute(self, job: JobDefinition, destination: Path, sink: ProgressSink) -> DumpOutcome:
        self.calls.append(job.name)
        self._attempts[job.name] += 1
        number = self._attempts[job.name]
        self.events.append(("start", job.name))
        self.active += 1
        self.active_by_job[job.name] += 1
        self.max_active = max(self.max_active, self.active)
        self.max_active_by_job[job.name] = max(self.max_active_by_job[job.name], self.active_by_job[job.name])
        try:
            sink.progress("Starting database backup...")
            sink.record(f"dumping {job.name}")
            if self.release is not None:
                await self.release.wait()
            await asyncio.sleep(self.delay)
            if number <= self.fail_first.get(job.name, 0):
                raise ExecutorError(f"mock error {number}")
            destination.mkdir(parents=True, exist_ok=True)
            path = destination / f"{job.name}-{number}.sql.gz"
            path.write_bytes(b"dump")
            return DumpOutcome(path=path, size=4)
        finally:
            self.active -= 1
            self.active_by_job[job.name] -= 1
            self.events.append(("end", job.name))


class FakeStorage:
    def __init__(self, fail_upload: bool = False, fail_age_out: bool = False):
        self.fail_upload = fail_upload
        self.fail_age_out = fail_age_out
        self.uploads: List[tuple] = []
        self.aged_out: List[tuple] = []

    async def upload(self, job_name: str, path: Path) -> str:
        if self.fail_upload:
            raise UploadError("bucket unavailable")
        self.uploads.append((job_name, Path(path)))
        return f"s3://backups/{job_name}/{Path(path).name}"

    async def age_out(self, job_name: str, retention: timedelta) -> int:
        self.aged_out.append((job_name, retention))
        if self.fail_age_out:
            raise CleanupError("access denied")
        return 0

    async def test_connection(self) -> None:
        return None


class RecordingNotifier:
    """
    Records notifier calls. Methods named in ``stall`` never return.
    """

    def __init__(self, fail_open: bool = False, stall: Iterable[str] = ()):
        self.fail_open = fail_open
        self.stall = set(stall)
        self.events: List[tuple] = []
        self.threads = 0

    @property
    def opened(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "open"]

    @property
    def progress_messages(self) -> List[str]:
        return [e[2] for e in self.events if e[0] == "progress"]

    @property
    def results(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "result"]

    async def _maybe_stall(self, method: str) -> None:
        if method in self.stall:
            await asyncio.Event().wait()

    async def open_thread(self, job_names: List[str], target: NotificationTarget) -> Optional[NotificationThread]:
        await self._maybe_stall("open_thread")
        if self.fail_open:
            raise RuntimeError("slack is down")
        self.threads += 1
        self.events.append(("open", list(job_names)))
        return NotificationThread(channel="C123", ts=f"{self.threads}.000")

    async def progress(self, thread: Optional[NotificationThread], job_name: str, message: str) -> None:
        await self._maybe_stall("progress")
        if thread is not None:
            self.events.append(("progress", job_name, message))

    async def result(self, thread: Optional[NotificationThread], results: Sequence[RunResult], overall_success: bool) -> None:
        await self._maybe_stall("result")
        if thread is None:
            return
        self.events.append(("result", list(results), overall_success))

    async def test_connection(self) -> None:
        return None


class RecordingMetrics:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.runs: List[tuple] = []

    def record_run(self, job_name: str, duration: timedelta, size: int, success: bool) -> None:
        if self.fail:
            raise RuntimeError("metrics backend down")
        self.runs.append((job_name, size, success))
