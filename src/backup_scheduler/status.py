import threading
from datetime import datetime
from typing import Dict, Optional

from backup_scheduler.domain.run import JobStatus, RunState


class StatusTable:
    """
    Last-known status per job, shared by concurrent runs and the health endpoint.

    Writers are the run coordinator only. The lock is held for a single
    update, never across an executor call.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[str, JobStatus] = {}

    def _entry(self, job_name: str) -> JobStatus:
        status = self._statuses.get(job_name)
        if status is None:
            status = JobStatus(job_name=job_name)
            self._statuses[job_name] = status
        return status

    def set_next_run(self, job_name: str, next_run: Optional[datetime]) -> None:
        with self._lock:
            self._entry(job_name).next_run = next_run

    def mark_running(self, job_name: str, started_at: datetime) -> None:
        with self._lock:
            status = self._entry(job_name)
            status.state = RunState.RUNNING
            status.last_run = started_at

    def mark_finished(
        self,
        job_name: str,
        success: bool,
        finished_at: datetime,
        next_run: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            status = self._entry(job_name)
            status.state = RunState.SUCCESS if success else RunState.FAILED
            status.last_run = finished_at
            status.next_run = next_run
            status.error = None if success else error

    def get(self, job_name: str) -> Optional[JobStatus]:
        with self._lock:
            status = self._statuses.get(job_name)
            return status.model_copy() if status else None

    def snapshot(self) -> Dict[str, JobStatus]:
        with self._lock:
            return {name: status.model_copy() for name, status in self._statuses.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._statuses)
