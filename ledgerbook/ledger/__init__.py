"""
Ledger Package

The core engine: the transaction log, account reconciliation and tag
statistics.
"""

from ledgerbook.ledger.transactions import (
    FilteredTransactions,
    TransactionLog,
    TransactionNotFoundError,
)
from ledgerbook.ledger.accounts import (
    AccountLedger,
    AccountNotFoundError,
    DuplicateAccountError,
    attribute_transactions,
    compute_totals,
    compute_update,
)
from ledgerbook.ledger.tags import (
    SORT_OPTIONS,
    ProtectedTagError,
    TagAggregator,
    TagManager,
    recompute_tags,
    sort_tags,
)

__all__ = [
    # Transactions
    "FilteredTransactions",
    "TransactionLog",
    "TransactionNotFoundError",
    # Accounts
    "AccountLedger",
    "AccountNotFoundError",
    "DuplicateAccountError",
    "attribute_transactions",
    "compute_totals",
    "compute_update",
    # Tags
    "SORT_OPTIONS",
    "ProtectedTagError",
    "TagAggregator",
    "TagManager",
    "recompute_tags",
    "sort_tags",
]
