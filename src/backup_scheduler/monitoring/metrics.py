"""Prometheus metrics for backup runs."""
import time
from datetime import timedelta
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsSink(Protocol):
    def record_run(self, job_name: str, duration: timedelta, size: int, success: bool) -> None:
        """Record the outcome of one run. Must not block or raise."""
        ...


class NullMetrics:
    def record_run(self, job_name: str, duration: timedelta, size: int, success: bool) -> None:
        return None


class PrometheusMetrics:
    """
    Run metrics on a dedicated registry, so several instances can coexist.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.backup_duration = Histogram(
            "backup_duration_seconds",
            "Duration of backup operations in seconds",
            ["strategy"],
            buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0],
            registry=self.registry,
        )
        self.backup_size = Gauge(
            "backup_size_bytes",
            "Size of backup files in bytes",
            ["strategy"],
            registry=self.registry,
        )
        self.backup_success = Counter(
            "backup_success_total",
            "Total number of successful backups",
            ["strategy"],
            registry=self.registry,
        )
        self.backup_failures = Counter(
            "backup_failures_total",
            "Total number of failed backups",
            ["strategy"],
            registry=self.registry,
        )
        self.last_backup_time = Gauge(
            "backup_last_time_seconds",
            "Timestamp of the last successful backup",
            ["strategy"],
            registry=self.registry,
        )

    def record_run(self, job_name: str, duration: timedelta, size: int, success: bool) -> None:
        if success:
            self.backup_success.labels(strategy=job_name).inc()
            self.backup_duration.labels(strategy=job_name).observe(duration.total_seconds())
            self.backup_size.labels(strategy=job_name).set(size)
            self.last_backup_time.labels(strategy=job_name).set(time.time())
        else:
            self.backup_failures.labels(strategy=job_name).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
