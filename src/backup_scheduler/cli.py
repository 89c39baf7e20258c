"""
Command line interface for the backup scheduler.

``serve`` runs the scheduler until SIGINT/SIGTERM. ``run-all`` and
``run-job`` run the full backup pipeline once and exit, which is how
backups are taken by hand or from an external cron.
"""
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Dict, List, Optional

import click

from backup_scheduler import __version__
from backup_scheduler.config import Settings, load_config
from backup_scheduler.domain import RunResult, utcnow
from backup_scheduler.errors import ConfigError, InvalidScheduleError, UnknownJobError
from backup_scheduler.notifications.slack import summary_line
from backup_scheduler.orchestrator import translate_jobs
from backup_scheduler.registry import JobRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_LEVELS = ["debug", "info", "warning", "error"]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _echo_result(result: RunResult) -> None:
    if result.success:
        click.echo(f"✓ {result.job_name}: {result.remote_location} ({result.duration})")
    else:
        click.echo(f"✗ {result.job_name}: {result.error}", err=True)


@click.group()
@click.version_option(version=__version__, prog_name="backup-scheduler")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False),
    default="config.yaml",
    show_default=True,
    envvar="BACKUP_SCHEDULER_CONFIG",
    help="Path to the YAML configuration file.",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help="Override the configured log level.")
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: Optional[str]):
    """
    backup-scheduler - scheduled database backups to S3 with Slack reporting.
    """
    ctx.ensure_object(dict)
    try:
        settings = load_config(config_path)
        JobRegistry.from_settings(settings)
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    configure_logging(log_level or settings.defaults.log_level)
    ctx.obj["settings"] = settings


@main.command()
@click.pass_context
def serve(ctx: click.Context):
    """Run the scheduler until interrupted."""
    try:
        asyncio.run(_serve(_settings(ctx)))
    except InvalidScheduleError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


async def _serve(settings: Settings) -> None:
    from backup_scheduler.service import BackupService

    service = BackupService(settings)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_requested.set)

    await service.start()
    startup_run: Optional[asyncio.Task] = None
    if settings.defaults.execute_on_startup:
        logger.info("Executing all backup jobs on startup")
        startup_run = asyncio.create_task(service.orchestrator.trigger_all())

    try:
        await stop_requested.wait()
        logger.info("Shutdown signal received")
    finally:
        await service.stop()
        if startup_run is not None:
            await asyncio.gather(startup_run, return_exceptions=True)


@main.command("run-all")
@click.pass_context
def run_all(ctx: click.Context):
    """Run every job once and exit (exit code 1 if any failed)."""
    results = asyncio.run(_run_all(_settings(ctx)))
    for result in results:
        _echo_result(result)
    click.echo(summary_line(results))
    if not all(result.success for result in results):
        raise SystemExit(1)


async def _run_all(settings: Settings) -> List[RunResult]:
    from backup_scheduler.service import BackupService

    service = BackupService(settings)
    return await service.orchestrator.trigger_all()


@main.command("run-job")
@click.argument("name")
@click.pass_context
def run_job(ctx: click.Context, name: str):
    """Run the job NAME once and exit."""
    settings = _settings(ctx)
    try:
        JobRegistry.from_settings(settings).get(name)
    except UnknownJobError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(2)

    result = asyncio.run(_run_job(settings, name))
    _echo_result(result)
    if not result.success:
        raise SystemExit(1)


async def _run_job(settings: Settings, name: str) -> RunResult:
    from backup_scheduler.service import BackupService

    service = BackupService(settings)
    return await service.orchestrator.trigger_one(name)


def _next_runs(settings: Settings) -> Dict[str, datetime]:
    schedules = translate_jobs(JobRegistry.from_settings(settings), settings.defaults.timezone)
    now = utcnow()
    return {name: schedule.next_fire(now) for name, schedule in schedules.items()}


@main.command()
@click.pass_context
def validate(ctx: click.Context):
    """Validate the configuration and every job's schedule."""
    settings = _settings(ctx)
    try:
        registry = JobRegistry.from_settings(settings)
        next_runs = _next_runs(settings)
    except (ConfigError, InvalidScheduleError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Configuration valid: {len(registry)} job(s)")
    for job in registry:
        click.echo(f"  {job.readable_string}")
        click.echo(f"    next run: {next_runs[job.name].isoformat()}")


@main.command("next-runs")
@click.pass_context
def next_runs(ctx: click.Context):
    """Print the next fire time of every job."""
    try:
        runs = _next_runs(_settings(ctx))
    except InvalidScheduleError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    for name, fire_at in runs.items():
        click.echo(f"{name}\t{fire_at.isoformat()}")


if __name__ == "__main__":
    main()
