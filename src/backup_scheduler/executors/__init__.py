from .base import DumpCommand, DumpExecutor, SqlDumpExecutor
from .mongo import MongoExecutor
from .mysql import MySQLExecutor
from .postgres import PostgresExecutor
from .protocol import BackupExecutor, DumpOutcome, ProgressSink

__all__ = [
    "BackupExecutor",
    "DumpCommand",
    "DumpExecutor",
    "DumpOutcome",
    "MongoExecutor",
    "MySQLExecutor",
    "PostgresExecutor",
    "ProgressSink",
    "SqlDumpExecutor",
]
