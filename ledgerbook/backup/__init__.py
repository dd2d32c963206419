"""Backup package."""

from ledgerbook.backup.scheduler import (
    DEFAULT_INTERVAL_SECONDS,
    BackupError,
    BackupScheduler,
)
from ledgerbook.backup.sinks import (
    BackupSink,
    FileBackupSink,
    LogBackupSink,
    create_sink,
)

__all__ = [
    "DEFAULT_INTERVAL_SECONDS",
    "BackupError",
    "BackupScheduler",
    "BackupSink",
    "FileBackupSink",
    "LogBackupSink",
    "create_sink",
]
