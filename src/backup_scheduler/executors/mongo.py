import asyncio
from datetime import datetime
from pathlib import Path

from backup_scheduler.domain.job import DatabaseKind, JobDefinition
from backup_scheduler.executors.artifacts import tar_directory
from backup_scheduler.executors.base import DumpCommand, DumpExecutor, join_display, redact_url
from backup_scheduler.executors.protocol import ProgressSink


class MongoExecutor(DumpExecutor):
    """
    Backs up MongoDB with ``mongodump`` into a directory, then archives it as tar.gz.
    """
    kind = DatabaseKind.MONGODB
    program = "mongodump"

    def output_path(self, job: JobDefinition, destination: Path, started_at: datetime) -> Path:
        return destination / self.artifact_stem(job, started_at)

    def build_command(self, job: JobDefinition, output: Path) -> DumpCommand:
        options = [f"--out={output}", "--verbose"]
        return DumpCommand(
            argv=[self.program, f"--uri={job.database_url}", *options],
            display=join_display(self.program, [f"--uri={redact_url(job.database_url)}", *options]),
        )

    async def finalize(self, output: Path, sink: ProgressSink) -> Path:
        sink.progress("MongoDB dump completed, creating archive...")
        archive = output.with_name(output.name + ".tar.gz")
        return await asyncio.to_thread(tar_directory, output, archive)
