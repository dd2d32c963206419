"""
Backup Models

A snapshot is the whole store at one instant: every key with its decoded
value, plus an ISO-8601 capture timestamp.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ledgerbook.models.ledger import utc_now


# File sinks name snapshots backup-<stamp>.json
BACKUP_FILE_PREFIX = "backup-"


class BackupEntry(BaseModel):
    """One stored key and its value."""

    key: str
    value: Any = None


class BackupSnapshot(BaseModel):
    """Full-store snapshot handed to a backup sink."""

    captured_at: datetime = Field(
        default_factory=utc_now,
        exclude=True,
    )
    data: list[BackupEntry] = Field(default_factory=list)

    @property
    def timestamp(self) -> str:
        """ISO-8601 capture time."""
        return self.captured_at.isoformat()

    def to_payload(self) -> dict:
        """The {timestamp, data: [{key, value}]} shape sinks receive."""
        return {
            "timestamp": self.timestamp,
            "data": [entry.model_dump(mode="json") for entry in self.data],
        }
