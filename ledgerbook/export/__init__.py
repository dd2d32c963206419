"""CSV export package."""

from ledgerbook.export.csv_export import (
    ACCOUNT_COLUMNS,
    TRANSACTION_COLUMNS,
    accounts_to_csv,
    transactions_to_csv,
)

__all__ = [
    "ACCOUNT_COLUMNS",
    "TRANSACTION_COLUMNS",
    "accounts_to_csv",
    "transactions_to_csv",
]
