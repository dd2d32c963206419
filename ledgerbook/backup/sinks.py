"""
Backup Sinks

Where snapshots go. The scheduler does not care; it hands every snapshot
to one sink and treats any exception as a failed backup.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from ledgerbook.config import BackupSettings
from ledgerbook.models.backup import BACKUP_FILE_PREFIX, BackupSnapshot


logger = structlog.get_logger(__name__)


class BackupSink(ABC):
    """Receives {timestamp, data} snapshots. Delivery is best-effort."""

    @abstractmethod
    async def emit(self, snapshot: BackupSnapshot) -> None:
        pass


class LogBackupSink(BackupSink):
    """Writes the whole snapshot to the structured log."""

    async def emit(self, snapshot: BackupSnapshot) -> None:
        logger.info(
            "backup_created",
            key_count=len(snapshot.data),
            backup=snapshot.to_payload(),
        )


class FileBackupSink(BackupSink):
    """Writes each snapshot to its own timestamped JSON file."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, snapshot: BackupSnapshot) -> Path:
        stamp = snapshot.captured_at.strftime("%Y%m%dT%H%M%S%fZ")
        return self._directory / f"{BACKUP_FILE_PREFIX}{stamp}.json"

    async def emit(self, snapshot: BackupSnapshot) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(snapshot)
        path.write_text(json.dumps(snapshot.to_payload(), indent=2), encoding="utf-8")
        logger.info("backup_written", path=str(path), key_count=len(snapshot.data))


def create_sink(settings: BackupSettings) -> BackupSink:
    """File sink when a backup directory is configured, log sink otherwise."""
    if settings.directory is not None:
        return FileBackupSink(settings.directory)
    return LogBackupSink()
