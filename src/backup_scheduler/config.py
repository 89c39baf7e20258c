"""
Configuration loading.

The configuration is a YAML file with a ``global`` section of defaults and a
``strategies`` list of backup jobs. ``${VAR}`` placeholders are substituted
from the environment before parsing. The resulting :class:`Settings` object
is passed explicitly to every component that needs it.
"""
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from backup_scheduler.domain.job import DatabaseKind
from backup_scheduler.errors import ConfigError
from backup_scheduler.schedule import parse_duration

_ENV_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def substitute_env_vars(text: str, environ: Optional[Dict[str, str]] = None) -> str:
    """
    Replace ``${VAR}`` with the value of ``VAR``. Unset or empty variables
    keep their placeholder.
    """
    env = os.environ if environ is None else environ

    def _replace(match: re.Match) -> str:
        value = env.get(match.group(1))
        return value if value else match.group(0)

    return _ENV_PLACEHOLDER.sub(_replace, text)


def _duration(value: Union[str, int, float, timedelta]) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    return parse_duration(value)


def _positive_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    duration = _duration(value)
    if duration <= timedelta(0):
        raise ValueError("duration must be positive")
    return duration


class SlackConfig(BaseModel):
    bot_token: Optional[str] = None
    channel_id: Optional[str] = None


class RetryConfig(BaseModel):
    max_attempts: int = Field(3, ge=1)


class TimeoutConfig(BaseModel):
    backup: timedelta = timedelta(minutes=30)
    upload: timedelta = timedelta(minutes=10)
    cleanup: timedelta = timedelta(minutes=5)
    notification: timedelta = timedelta(seconds=30)

    @field_validator("backup", "upload", "cleanup", "notification", mode="before")
    def parse_timeouts(cls, v: Any) -> timedelta:
        return _positive_duration(v)


class S3Credentials(BaseModel):
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: Optional[str] = None


class S3Config(BaseModel):
    bucket: str = ""
    base_path: str = "database-backups"
    compression: Literal["gzip", "none"] = "gzip"
    endpoint: Optional[str] = Field(None, description="Custom endpoint for MinIO or other S3-compatible storage")
    credentials: S3Credentials = Field(default_factory=S3Credentials)


class MetricsConfig(BaseModel):
    enabled: bool = True
    port: int = 8080
    path: str = "/metrics"


class HealthCheckConfig(BaseModel):
    port: int = 8080
    path: str = "/health"


class MonitoringConfig(BaseModel):
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)


class GlobalConfig(BaseModel):
    slack: SlackConfig = Field(default_factory=SlackConfig)
    log_level: str = "info"
    schedule: str = "1d"
    retention: timedelta = timedelta(days=30)
    timezone: str = "UTC"
    temp_dir: Path = Path("/tmp/db-backup")
    max_parallel: int = Field(2, ge=1, alias="max_parallel_strategies")
    execute_on_startup: bool = False
    retry: RetryConfig = Field(default_factory=RetryConfig)
    timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)
    s3: S3Config = Field(default_factory=S3Config)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("retention", mode="before")
    def parse_retention(cls, v: Any) -> timedelta:
        return _positive_duration(v)


class JobConfig(BaseModel):
    """
    One entry of the ``strategies`` list. Unset fields inherit from ``global``.
    """
    name: str = Field(..., min_length=1)
    database_type: DatabaseKind = DatabaseKind.POSTGRES
    database_url: str
    schedule: Optional[str] = None
    retention: Optional[timedelta] = None
    max_attempts: Optional[int] = Field(None, ge=1)
    slack: SlackConfig = Field(default_factory=SlackConfig)

    @field_validator("retention", mode="before")
    def parse_retention(cls, v: Any) -> Optional[timedelta]:
        return None if v in (None, "") else _positive_duration(v)


class Settings(BaseModel):
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    strategies: List[JobConfig] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def check_unique_names(self) -> "Settings":
        seen = set()
        for job in self.strategies:
            if job.name in seen:
                raise ValueError(f"Duplicate strategy name '{job.name}'")
            seen.add(job.name)
        return self

    @property
    def defaults(self) -> GlobalConfig:
        return self.global_


def apply_slack_env(settings: Settings, environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    ``SLACK_BOT_TOKEN`` and ``SLACK_CHANNEL_ID`` override the global Slack settings.
    """
    env = os.environ if environ is None else environ
    slack = settings.global_.slack
    if env.get("SLACK_BOT_TOKEN"):
        slack.bot_token = env["SLACK_BOT_TOKEN"]
    if env.get("SLACK_CHANNEL_ID"):
        slack.channel_id = env["SLACK_CHANNEL_ID"]
    return settings


def parse_config(text: str, environ: Optional[Dict[str, str]] = None) -> Settings:
    try:
        raw = yaml.safe_load(substitute_env_vars(text, environ)) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("Config file must contain a mapping at the top level")

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    return apply_slack_env(settings, environ)


def load_config(path: Union[str, Path], environ: Optional[Dict[str, str]] = None) -> Settings:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}") from e
    return parse_config(text, environ)
