import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from backup_scheduler.config import GlobalConfig
from backup_scheduler.domain import FireEvent, JobDefinition, RunAttempt, RunResult, TriggerKind, utcnow
from backup_scheduler.errors import (
    CancellationError,
    CleanupError,
    ExecutorError,
    InvalidScheduleError,
    UploadError,
)
from backup_scheduler.executor_factory import JobExecutorFactory
from backup_scheduler.executors.artifacts import delete_local
from backup_scheduler.executors.protocol import DumpOutcome
from backup_scheduler.gate import ConcurrencyGate
from backup_scheduler.monitoring.metrics import MetricsSink, NullMetrics
from backup_scheduler.notifications.protocol import NotificationThread, Notifier
from backup_scheduler.schedule import translate
from backup_scheduler.status import StatusTable
from backup_scheduler.storages.protocol import Storage

logger = logging.getLogger(__name__)


class _ProgressForwarder:
    """
    Sends progress lines to a notification thread in the order they were produced.

    Producers never wait on the network. A single consumer task posts the
    queued lines, each bounded by ``timeout``; :meth:`aclose` drains it so
    that progress never arrives after the final result.
    """

    def __init__(
        self,
        notifier: Notifier,
        thread: Optional[NotificationThread],
        job_name: str,
        timeout: timedelta,
    ):
        self.notifier = notifier
        self.thread = thread
        self.job_name = job_name
        self.timeout = timeout
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        if thread is not None:
            self._consumer = asyncio.create_task(self._consume())

    def send(self, message: str) -> None:
        if self._consumer is not None:
            self._queue.put_nowait(message)

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await asyncio.wait_for(
                    self.notifier.progress(self.thread, self.job_name, message),
                    timeout=self.timeout.total_seconds(),
                )
            except Exception as e:
                logger.warning("Failed to send progress notification for %s: %s", self.job_name, e)

    async def aclose(self) -> None:
        if self._consumer is None:
            return
        self._queue.put_nowait(None)
        await self._consumer

    def cancel(self) -> None:
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()


class _AttemptSink:
    """
    Progress sink handed to an executor for a single attempt.
    """

    def __init__(self, attempt: RunAttempt, forwarder: _ProgressForwarder):
        self.attempt = attempt
        self.forwarder = forwarder

    def progress(self, message: str) -> None:
        self.attempt.diagnostics.append(message)
        self.forwarder.send(message)

    def record(self, line: str) -> None:
        self.attempt.diagnostics.append(line)


class RunCoordinator:
    """
    Executes one fire event of one job from gate admission to final notification.

    Runs of the same job are mutually exclusive; runs of different jobs only
    contend for the concurrency gate. Setting ``shutdown`` makes gate waiters
    give up and interrupts in-flight dump, upload and cleanup waits.
    """

    def __init__(
        self,
        config: GlobalConfig,
        executors: JobExecutorFactory,
        storage: Storage,
        notifier: Notifier,
        status: StatusTable,
        gate: ConcurrencyGate,
        metrics: Optional[MetricsSink] = None,
        shutdown: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.executors = executors
        self.storage = storage
        self.notifier = notifier
        self.status = status
        self.gate = gate
        self.metrics = metrics or NullMetrics()
        self.shutdown = shutdown or asyncio.Event()
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_running(self, job_name: str) -> bool:
        lock = self._locks.get(job_name)
        return lock is not None and lock.locked()

    async def run(
        self,
        job: JobDefinition,
        event: FireEvent,
        thread: Optional[NotificationThread] = None,
    ) -> RunResult:
        lock = self._locks.setdefault(job.name, asyncio.Lock())
        async with lock:
            async with self.gate.slot(self.shutdown) as granted:
                if not granted:
                    return self._not_started(job, event)
                return await self._run_admitted(job, event, thread)

    def _not_started(self, job: JobDefinition, event: FireEvent) -> RunResult:
        error = CancellationError(f"Backup of {job.name} cancelled before start: shutting down")
        logger.warning("%s", error)
        now = utcnow()
        return RunResult(
            job_name=job.name,
            trigger=event.kind,
            success=False,
            started_at=now,
            finished_at=now,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _run_admitted(
        self,
        job: JobDefinition,
        event: FireEvent,
        thread: Optional[NotificationThread],
    ) -> RunResult:
        started_at = utcnow()
        self.status.mark_running(job.name, started_at)
        logger.info("Starting %s backup for job %s", event.kind.value, job.name)

        # Runs triggered together share the thread opened by the caller.
        owns_thread = event.kind != TriggerKind.MANUAL_ALL
        if owns_thread:
            thread = await self._open_thread(job)

        forwarder = _ProgressForwarder(self.notifier, thread, job.name, self.config.timeout.notification)
        try:
            attempts, outcome, error = await self._attempt_loop(job, forwarder)
            remote_location = None
            if error is None:
                forwarder.send("Uploading to S3...")
                try:
                    remote_location = await self._upload(job, outcome.path)
                except (UploadError, CancellationError) as e:
                    error = e
                    logger.error("Upload for job %s failed: %s", job.name, e)
                else:
                    forwarder.send(f"Uploaded to {remote_location}")
                    await self._cleanup(job, outcome.path, forwarder)
        except BaseException:
            forwarder.cancel()
            raise
        if self.shutdown.is_set():
            forwarder.cancel()
        else:
            await self.notify(forwarder.aclose(), f"progress notifications for {job.name}")
            forwarder.cancel()

        result = RunResult(
            job_name=job.name,
            trigger=event.kind,
            success=error is None,
            started_at=started_at,
            finished_at=utcnow(),
            artifact_path=outcome.path if outcome else None,
            size=outcome.size if outcome else 0,
            remote_location=remote_location,
            attempts=attempts,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )
        self._finish(job, result)

        if owns_thread:
            await self.notify(
                self.notifier.result(thread, [result], result.success),
                f"result notification for {job.name}",
            )
        return result

    async def _attempt_loop(
        self,
        job: JobDefinition,
        forwarder: _ProgressForwarder,
    ) -> Tuple[List[RunAttempt], Optional[DumpOutcome], Optional[Exception]]:
        executor = self.executors.get_executor(job.database)
        destination = Path(self.config.temp_dir)
        attempts: List[RunAttempt] = []
        error: Optional[Exception] = None

        for number in range(1, job.max_attempts + 1):
            if number > 1:
                forwarder.send(f"Retrying backup (attempt {number}/{job.max_attempts})")
            attempt = RunAttempt(number=number)
            attempts.append(attempt)
            try:
                outcome = await self._bounded(
                    executor.execute(job, destination, _AttemptSink(attempt, forwarder)),
                    self.config.timeout.backup,
                    f"backup of {job.name}",
                )
            except CancellationError as e:
                attempt.finish(e)
                return attempts, None, e
            except TimeoutError:
                error = ExecutorError(f"backup timed out after {self.config.timeout.backup}")
            except ExecutorError as e:
                attempt.diagnostics.extend(e.diagnostics)
                error = e
            except Exception as e:
                logger.exception("Unexpected error while backing up %s", job.name)
                error = ExecutorError(f"unexpected executor error: {e}")
            else:
                attempt.finish()
                return attempts, outcome, None

            attempt.finish(error)
            logger.warning("Attempt %d/%d for job %s failed: %s", number, job.max_attempts, job.name, error)
            if number < job.max_attempts:
                forwarder.send(f"Attempt {number}/{job.max_attempts} failed: {error}")

        return attempts, None, error

    async def _upload(self, job: JobDefinition, path: Path) -> str:
        try:
            return await self._bounded(
                self.storage.upload(job.name, path),
                self.config.timeout.upload,
                f"upload of {job.name}",
            )
        except (UploadError, CancellationError):
            raise
        except TimeoutError as e:
            raise UploadError(f"upload timed out after {self.config.timeout.upload}") from e
        except Exception as e:
            raise UploadError(f"upload failed: {e}") from e

    async def _cleanup(self, job: JobDefinition, path: Path, forwarder: _ProgressForwarder) -> None:
        try:
            await asyncio.to_thread(delete_local, path)
        except OSError as e:
            logger.warning("%s", CleanupError(f"Failed to delete local backup {path}: {e}"))

        forwarder.send("Cleaning up old backups...")
        try:
            deleted = await self._bounded(
                self.storage.age_out(job.name, job.retention),
                self.config.timeout.cleanup,
                f"cleanup of {job.name}",
            )
        except TimeoutError:
            logger.warning("Remote cleanup for job %s timed out after %s", job.name, self.config.timeout.cleanup)
        except Exception as e:
            logger.warning("Remote cleanup for job %s failed: %s", job.name, e)
        else:
            if deleted:
                logger.info("Aged out %d backup(s) of job %s", deleted, job.name)

    async def _bounded(self, awaitable: Awaitable[Any], timeout: timedelta, what: str) -> Any:
        """
        Await ``awaitable`` until it completes, ``timeout`` elapses or shutdown is requested.

        Raises TimeoutError on deadline and CancellationError on shutdown;
        in both cases the awaitable is cancelled and awaited first.
        """
        task = asyncio.ensure_future(awaitable)
        stopping = asyncio.ensure_future(self.shutdown.wait())
        try:
            done, _ = await asyncio.wait(
                {task, stopping},
                timeout=timeout.total_seconds(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            stopping.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self.shutdown.is_set():
            raise CancellationError(f"{what} cancelled: shutting down")
        raise TimeoutError(f"{what} timed out after {timeout}")

    async def notify(self, awaitable: Awaitable[Any], what: str) -> Any:
        """
        Await a notifier call bounded by the notification timeout and shutdown.

        Notifications never fail a run: errors are logged and yield None.
        """
        try:
            return await self._bounded(awaitable, self.config.timeout.notification, what)
        except Exception as e:
            logger.warning("Failed to send %s: %s", what, e)
            return None

    async def _open_thread(self, job: JobDefinition) -> Optional[NotificationThread]:
        return await self.notify(
            self.notifier.open_thread([job.name], job.notification),
            f"notification thread for {job.name}",
        )

    def _next_run(self, job: JobDefinition, after: datetime) -> Optional[datetime]:
        try:
            return translate(job.schedule, self.config.timezone).next_fire(after)
        except InvalidScheduleError:
            return None

    def _finish(self, job: JobDefinition, result: RunResult) -> None:
        self.status.mark_finished(
            job.name,
            success=result.success,
            finished_at=result.finished_at,
            next_run=self._next_run(job, result.finished_at),
            error=result.error,
        )

        if result.success:
            logger.info(
                "Backup of %s succeeded in %s after %d attempt(s): %s",
                job.name, result.duration, result.attempt_count, result.remote_location,
            )
        else:
            logger.error(
                "Backup of %s failed after %d attempt(s): %s",
                job.name, result.attempt_count, result.error,
            )

        try:
            self.metrics.record_run(job.name, result.duration, result.size, result.success)
        except Exception as e:
            logger.warning("Failed to record metrics for %s: %s", job.name, e)
