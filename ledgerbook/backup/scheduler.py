"""
Backup Scheduler

DESIGN DECISION: Backups are best-effort. On a fixed interval the whole
store is read and emitted as one snapshot. A failing backup is logged and
the schedule carries on; it never raises into the caller and never blocks
foreground operations beyond sharing the event loop.

The periodic task is cancelled on shutdown. A snapshot in progress when
that happens is abandoned.
"""

import asyncio
from typing import Callable, Optional

import structlog

from ledgerbook.backup.sinks import BackupSink, LogBackupSink
from ledgerbook.models.backup import BackupEntry, BackupSnapshot
from ledgerbook.models.ledger import utc_now
from ledgerbook.services.storage.interface import KeyValueBackend


DEFAULT_INTERVAL_SECONDS = 3600.0

logger = structlog.get_logger(__name__)


class BackupError(Exception):
    """A snapshot could not be captured or delivered."""
    pass


class BackupScheduler:
    """Periodically snapshots a store into a sink."""

    def __init__(
        self,
        store: KeyValueBackend,
        sink: Optional[BackupSink] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable = utc_now,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._sink = sink or LogBackupSink()
        self._interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.last_snapshot: Optional[BackupSnapshot] = None
        self.last_error: Optional[BackupError] = None
        self.failure_count = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def capture(self) -> BackupSnapshot:
        """
        Read every key from the store.

        Raises:
            BackupError: If the store cannot be read
        """
        captured_at = self._clock()
        try:
            keys = await self._store.list_keys("")
            entries = [
                BackupEntry(key=key, value=await self._store.get(key))
                for key in keys
            ]
        except Exception as e:
            raise BackupError(f"Could not read store: {e}") from e
        return BackupSnapshot(captured_at=captured_at, data=entries)

    async def run_once(self) -> Optional[BackupSnapshot]:
        """
        Capture and emit one snapshot.

        Returns the snapshot, or None if the backup failed.
        """
        try:
            snapshot = await self.capture()
            try:
                await self._sink.emit(snapshot)
            except Exception as e:
                raise BackupError(f"Could not deliver snapshot: {e}") from e
        except BackupError as e:
            self.failure_count += 1
            self.last_error = e
            logger.error("backup_failed", error=str(e), failures=self.failure_count)
            return None

        self.last_snapshot = snapshot
        self.last_error = None
        return snapshot

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    def start(self) -> None:
        """Start the periodic task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="ledgerbook-backup")
        logger.info("backup_scheduler_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the periodic task."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("backup_scheduler_stopped")
