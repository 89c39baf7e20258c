import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Set

from backup_scheduler.coordinator import RunCoordinator
from backup_scheduler.domain import FireEvent, JobDefinition, NotificationTarget, RunResult, TriggerKind, utcnow
from backup_scheduler.errors import InvalidScheduleError
from backup_scheduler.notifications.protocol import Notifier
from backup_scheduler.notifications.slack import summary_line
from backup_scheduler.registry import JobRegistry
from backup_scheduler.schedule import Schedule, translate

logger = logging.getLogger(__name__)


def translate_jobs(registry: JobRegistry, timezone: str = "UTC") -> Dict[str, Schedule]:
    """
    Translate every job's schedule.

    Raises:
        InvalidScheduleError: Naming the first job whose schedule is invalid.
    """
    schedules: Dict[str, Schedule] = {}
    for job in registry:
        try:
            schedules[job.name] = translate(job.schedule, timezone)
        except InvalidScheduleError as e:
            raise InvalidScheduleError(f"Invalid schedule for job '{job.name}': {e}") from e
    return schedules


class Orchestrator:
    """
    Owns the job set, the trigger tasks and the shutdown signal.

    Every job gets its own trigger task that sleeps until the next fire time
    and hands a :class:`FireEvent` to the coordinator on a fresh task, so
    slow runs never delay other jobs' triggers.
    """

    def __init__(
        self,
        registry: JobRegistry,
        coordinator: RunCoordinator,
        notifier: Notifier,
        timezone: str = "UTC",
        default_target: Optional[NotificationTarget] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.coordinator = coordinator
        self.notifier = notifier
        self.timezone = timezone
        self.default_target = default_target or NotificationTarget()
        self.clock = clock
        self._schedules: Dict[str, Schedule] = {}
        self._trigger_tasks: Dict[str, asyncio.Task] = {}
        self._runs: Set[asyncio.Task] = set()
        self._started = False
        self._stopped = False

    @property
    def shutdown(self) -> asyncio.Event:
        return self.coordinator.shutdown

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    def translate_all(self) -> Dict[str, Schedule]:
        return translate_jobs(self.registry, self.timezone)

    async def start(self) -> None:
        """
        Register every job with the trigger mechanism.

        Schedules are all translated before any trigger starts, so a single
        bad schedule leaves nothing running.
        """
        if self._started:
            raise RuntimeError("Orchestrator already started")
        self._schedules = self.translate_all()

        now = self.clock()
        for job in self.registry:
            schedule = self._schedules[job.name]
            self.coordinator.status.set_next_run(job.name, schedule.next_fire(now))
            self._trigger_tasks[job.name] = asyncio.create_task(
                self._trigger_loop(job, schedule), name=f"trigger-{job.name}"
            )
            logger.info("Scheduled job %s (%s)", job.name, schedule.format_schedule())

        self._started = True
        logger.info("Orchestrator started with %d job(s)", len(self._trigger_tasks))

    async def stop(self) -> None:
        """
        Stop triggering and wait for in-flight runs to observe the shutdown.
        """
        if self._stopped:
            return
        self._stopped = True
        self.shutdown.set()
        logger.info("Stopping orchestrator")

        if self._trigger_tasks:
            await asyncio.gather(*self._trigger_tasks.values(), return_exceptions=True)
            self._trigger_tasks.clear()
        if self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)
        logger.info("Orchestrator stopped")

    async def _trigger_loop(self, job: JobDefinition, schedule: Schedule) -> None:
        fire_at = schedule.next_fire(self.clock())
        while not self.shutdown.is_set():
            delay = (fire_at - self.clock()).total_seconds()
            if delay > 0:
                try:
                    await asyncio.wait_for(self.shutdown.wait(), timeout=delay)
                    return
                except asyncio.TimeoutError:
                    continue

            self._dispatch(job, FireEvent.scheduled(job.name, fire_at))
            # Never fire the same instant twice, even if the clock lags.
            fire_at = schedule.next_fire(max(self.clock(), fire_at + timedelta(seconds=1)))
            self.coordinator.status.set_next_run(job.name, fire_at)

    def _dispatch(self, job: JobDefinition, event: FireEvent) -> None:
        if self.coordinator.is_running(job.name):
            logger.warning("Skipping scheduled run of %s: previous run still in progress", job.name)
            return
        logger.debug("Firing job %s scheduled at %s", job.name, event.fired_at)
        self._spawn(self.coordinator.run(job, event))

    def _spawn(self, coro: Awaitable[RunResult]) -> "asyncio.Task[RunResult]":
        task = asyncio.ensure_future(coro)
        self._runs.add(task)
        task.add_done_callback(self._run_done)
        return task

    def _run_done(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Backup run crashed: %s", error, exc_info=error)

    async def trigger_one(self, name: str) -> RunResult:
        job = self.registry.get(name)
        return await self._spawn(self.coordinator.run(job, FireEvent.manual(job.name)))

    async def trigger_all(self) -> List[RunResult]:
        """
        Run every job once, one after the other, under a single notification thread.
        """
        jobs = list(self.registry)
        thread = await self.coordinator.notify(
            self.notifier.open_thread([job.name for job in jobs], self.default_target),
            "notification thread for manual run",
        )

        results: List[RunResult] = []
        for job in jobs:
            event = FireEvent.manual(job.name, TriggerKind.MANUAL_ALL)
            results.append(await self._spawn(self.coordinator.run(job, event, thread=thread)))

        overall_success = all(result.success for result in results)
        logger.info("Manual run of all jobs finished: %s", summary_line(results))
        await self.coordinator.notify(
            self.notifier.result(thread, results, overall_success),
            "aggregated result notification",
        )
        return results

    def next_runs(self) -> Dict[str, datetime]:
        schedules = self._schedules or self.translate_all()
        now = self.clock()
        return {name: schedule.next_fire(now) for name, schedule in schedules.items()}
