from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DatabaseKind(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"


class TriggerKind(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL_SINGLE = "manual_single"
    MANUAL_ALL = "manual_all"


class NotificationTarget(BaseModel):
    """
    Where the messages of a run are posted.
    """
    model_config = ConfigDict(frozen=True)

    channel_id: Optional[str] = Field(None, description="Slack channel receiving the run thread")

    @property
    def enabled(self) -> bool:
        return bool(self.channel_id)


class JobDefinition(BaseModel):
    """
    One named, independently schedulable backup job. Immutable once loaded.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique job name")
    database: DatabaseKind = Field(DatabaseKind.POSTGRES, description="Kind of database to dump")
    database_url: str = Field(..., description="Connection URL handed to the dump tool")
    schedule: str = Field(..., description="Cron expression or duration shorthand such as 6h or 1d")
    retention: timedelta = Field(..., description="Remote artifacts older than this are aged out")
    max_attempts: int = Field(3, ge=1, description="Attempts per run, including the first one")
    notification: NotificationTarget = Field(default_factory=NotificationTarget)

    @field_validator("retention")
    def check_retention(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("retention must be positive")
        return v

    @property
    def readable_string(self) -> str:
        return (
            f"Job '{self.name}' ({self.database.value}), schedule '{self.schedule}', "
            f"retention {self.retention}, {self.max_attempts} attempt(s)"
        )


class FireEvent(BaseModel):
    """
    Request that a job runs once. Consumed by a single coordinator run.
    """
    model_config = ConfigDict(frozen=True)

    job_name: str
    fired_at: datetime
    kind: TriggerKind = TriggerKind.SCHEDULED

    @field_validator("fired_at")
    def check_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def scheduled(cls, job_name: str, fired_at: datetime) -> "FireEvent":
        return cls(job_name=job_name, fired_at=fired_at, kind=TriggerKind.SCHEDULED)

    @classmethod
    def manual(cls, job_name: str, kind: TriggerKind = TriggerKind.MANUAL_SINGLE) -> "FireEvent":
        if kind == TriggerKind.SCHEDULED:
            raise ValueError("Manual fire events must use a manual trigger kind")
        return cls(job_name=job_name, fired_at=datetime.now(timezone.utc), kind=kind)

    @property
    def is_manual(self) -> bool:
        return self.kind != TriggerKind.SCHEDULED
