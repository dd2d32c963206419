"""
Data Models Package

This package contains all Pydantic models used by Ledgerbook.
Everything persisted or exchanged between components conforms to these schemas.
"""

from ledgerbook.models.ledger import (
    EPOCH,
    PRELOADED_TAGS,
    Account,
    AccountType,
    AccountUpdate,
    LedgerTotals,
    TagStat,
    Transaction,
    TransactionType,
    default_accounts,
    default_tags,
    default_transactions,
    to_utc,
    utc_now,
)
from ledgerbook.models.backup import BACKUP_FILE_PREFIX, BackupEntry, BackupSnapshot

__all__ = [
    # Ledger models
    "EPOCH",
    "PRELOADED_TAGS",
    "Account",
    "AccountType",
    "AccountUpdate",
    "LedgerTotals",
    "TagStat",
    "Transaction",
    "TransactionType",
    "default_accounts",
    "default_tags",
    "default_transactions",
    "to_utc",
    "utc_now",
    # Backup models
    "BACKUP_FILE_PREFIX",
    "BackupEntry",
    "BackupSnapshot",
]
