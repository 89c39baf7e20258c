from typing import Dict, Iterable, Iterator, List

from pydantic import ValidationError

from backup_scheduler.config import Settings
from backup_scheduler.domain.job import JobDefinition, NotificationTarget
from backup_scheduler.errors import ConfigError, UnknownJobError


class JobRegistry:
    """
    Immutable, ordered set of job definitions loaded once at startup.
    """

    def __init__(self, jobs: Iterable[JobDefinition]):
        self._jobs: Dict[str, JobDefinition] = {}
        for job in jobs:
            if job.name in self._jobs:
                raise ConfigError(f"Duplicate job name '{job.name}'")
            self._jobs[job.name] = job

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobRegistry":
        defaults = settings.global_
        jobs = []
        for entry in settings.strategies:
            try:
                job = JobDefinition(
                    name=entry.name,
                    database=entry.database_type,
                    database_url=entry.database_url,
                    schedule=entry.schedule or defaults.schedule,
                    retention=entry.retention or defaults.retention,
                    max_attempts=entry.max_attempts or defaults.retry.max_attempts,
                    notification=NotificationTarget(
                        channel_id=entry.slack.channel_id or defaults.slack.channel_id
                    ),
                )
            except ValidationError as e:
                raise ConfigError(f"Invalid definition for job '{entry.name}': {e}") from e
            jobs.append(job)
        return cls(jobs)

    @property
    def names(self) -> List[str]:
        return list(self._jobs)

    def get(self, name: str) -> JobDefinition:
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)
