from pathlib import Path

from backup_scheduler.domain.job import DatabaseKind, JobDefinition
from backup_scheduler.executors.base import DumpCommand, SqlDumpExecutor, join_display, redact_url


class PostgresExecutor(SqlDumpExecutor):
    """
    Backs up PostgreSQL with ``pg_dump`` in custom format.
    """
    kind = DatabaseKind.POSTGRES
    program = "pg_dump"

    def build_command(self, job: JobDefinition, output: Path) -> DumpCommand:
        options = ["--no-password", "--verbose", "--format=custom", f"--file={output}"]
        return DumpCommand(
            argv=[self.program, job.database_url, *options],
            display=join_display(self.program, [redact_url(job.database_url), *options]),
        )
