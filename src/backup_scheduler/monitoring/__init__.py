from .health import HealthServer
from .metrics import MetricsSink, NullMetrics, PrometheusMetrics

__all__ = ["HealthServer", "MetricsSink", "NullMetrics", "PrometheusMetrics"]
