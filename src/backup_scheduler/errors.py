from typing import List, Optional


class BackupSchedulerError(Exception):
    """
    Base class for every error raised by the scheduler.
    """


class ConfigError(BackupSchedulerError):
    pass


class InvalidScheduleError(BackupSchedulerError, ValueError):
    pass


class UnknownJobError(BackupSchedulerError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown backup job '{name}'")
        self.name = name


class ExecutorError(BackupSchedulerError):
    """
    A dump tool failed, could not be started, or ran past its deadline.
    Retried by the coordinator up to the job's attempt budget.
    """

    def __init__(self, message: str, diagnostics: Optional[List[str]] = None):
        super().__init__(message)
        self.diagnostics: List[str] = list(diagnostics or [])


class UploadError(BackupSchedulerError):
    pass


class CleanupError(BackupSchedulerError):
    pass


class CancellationError(BackupSchedulerError):
    pass


class StorageError(BackupSchedulerError):
    pass


class NotificationError(BackupSchedulerError):
    pass
