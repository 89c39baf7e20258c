from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from backup_scheduler.domain.job import JobDefinition


class DumpOutcome(BaseModel):
    path: Path
    size: int


class ProgressSink(Protocol):
    """
    Receives everything a dump attempt has to say.
    """

    def progress(self, message: str) -> None:
        """
        Forward a user-visible progress line. Must not block.
        """
        ...

    def record(self, line: str) -> None:
        """
        Keep a diagnostic line for the attempt's log.
        """
        ...


class BackupExecutor(Protocol):
    """
    Protocol class for backup executors.
    """

    async def execute(self, job: JobDefinition, destination: Path, sink: ProgressSink) -> DumpOutcome:
        """
        Dump the job's database into ``destination``.

        Safe to call once per attempt. Deadlines are enforced by the caller
        through cancellation; implementations must stop their work when
        cancelled.

        Args:
            job (JobDefinition): The job being backed up.
            destination (Path): Directory the artifact is written to.
            sink (ProgressSink): Progress and diagnostic receiver.

        Raises:
            ExecutorError: If the dump failed.
        """
        ...
