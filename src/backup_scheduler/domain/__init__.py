from .job import DatabaseKind, FireEvent, JobDefinition, NotificationTarget, TriggerKind
from .run import JobStatus, RunAttempt, RunResult, RunState, utcnow

__all__ = [
    "DatabaseKind",
    "FireEvent",
    "JobDefinition",
    "NotificationTarget",
    "TriggerKind",
    "JobStatus",
    "RunAttempt",
    "RunResult",
    "RunState",
    "utcnow",
]
