from typing import Dict, List, Optional, assert_never

from backup_scheduler.config import GlobalConfig
from backup_scheduler.domain.job import DatabaseKind
from backup_scheduler.executors import MongoExecutor, MySQLExecutor, PostgresExecutor
from backup_scheduler.executors.protocol import BackupExecutor


def builtin_executor(kind: DatabaseKind, compression: str = "gzip") -> BackupExecutor:
    """
    Build the executor shipped for a database kind.
    """
    if kind is DatabaseKind.POSTGRES:
        return PostgresExecutor(compression)
    elif kind is DatabaseKind.MYSQL or kind is DatabaseKind.MARIADB:
        return MySQLExecutor(compression)
    elif kind is DatabaseKind.MONGODB:
        return MongoExecutor(compression)
    else:
        assert_never(kind)


class JobExecutorFactory:
    """
    Factory resolving the executor for each database kind.

    Kinds without a registered executor fall back to the built-in one.
    """

    def __init__(self, config: Optional[GlobalConfig] = None):
        self._compression = config.s3.compression if config else "gzip"
        self._executors: Dict[DatabaseKind, BackupExecutor] = {}
        self._builtins: Dict[DatabaseKind, BackupExecutor] = {}

    @property
    def supported_kinds(self) -> List[DatabaseKind]:
        return list(DatabaseKind)

    def register(self, kind: DatabaseKind, executor: BackupExecutor, replace: bool = False) -> None:
        """
        Register an executor for a database kind.

        Args:
            kind (DatabaseKind): The database kind the executor handles.
            executor (BackupExecutor): The executor instance.
            replace (bool): Allow replacing a previously registered executor.

        Raises:
            ValueError: If an executor is already registered and ``replace`` is False.
        """
        kind = DatabaseKind(kind)
        if kind in self._executors and not replace:
            raise ValueError(f"An executor for database kind '{kind.value}' is already registered")
        self._executors[kind] = executor

    def get_executor(self, kind: DatabaseKind) -> BackupExecutor:
        """
        Raises:
            KeyError: If the kind is not a known database kind.
        """
        try:
            kind = DatabaseKind(kind)
        except ValueError:
            raise KeyError(f"Unsupported database kind '{kind}'") from None
        if kind in self._executors:
            return self._executors[kind]
        if kind not in self._builtins:
            self._builtins[kind] = builtin_executor(kind, self._compression)
        return self._builtins[kind]
