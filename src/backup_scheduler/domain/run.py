from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .job import TriggerKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunAttempt(BaseModel):
    """
    A single try at dumping the database within a run.
    """
    number: int = Field(..., ge=1)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    diagnostics: List[str] = Field(default_factory=list)

    def finish(self, error: Optional[BaseException] = None) -> None:
        self.finished_at = utcnow()
        self.success = error is None
        self.error = str(error) if error is not None else None


class RunResult(BaseModel):
    """
    Summary of one run, from fire event to terminal outcome.
    """
    model_config = ConfigDict(frozen=True)

    job_name: str
    trigger: TriggerKind = TriggerKind.SCHEDULED
    success: bool
    started_at: datetime
    finished_at: datetime
    artifact_path: Optional[Path] = None
    size: int = 0
    remote_location: Optional[str] = None
    attempts: List[RunAttempt] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def duration(self) -> timedelta:
        return self.finished_at - self.started_at

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def diagnostics(self) -> List[str]:
        lines: List[str] = []
        for attempt in self.attempts:
            lines.extend(attempt.diagnostics)
        return lines


class JobStatus(BaseModel):
    job_name: str
    state: RunState = RunState.IDLE
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    error: Optional[str] = None
