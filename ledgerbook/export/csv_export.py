"""
CSV Export

Renders ledger data for download. Formatting only: every figure comes
straight from the models, nothing is recomputed here.

Accounts: one current-state row per account, one row per AccountUpdate,
and a trailing TOTAL row built from LedgerTotals.
Transactions: one row per transaction, tags joined with ";".
"""

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from ledgerbook.models.ledger import Account, LedgerTotals, Transaction, utc_now


ACCOUNT_COLUMNS = [
    "Account Name",
    "Account Type",
    "Current Balance",
    "Date",
    "Balance",
    "Input Income",
    "Input Expense",
    "Balance-based Expense",
]

TRANSACTION_COLUMNS = [
    "ID",
    "Type",
    "Date",
    "Tags",
    "Amount",
    "Description",
    "Account",
    "From Account",
    "To Account",
]

ZERO = Decimal("0")


def format_date_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def _number(value: Decimal) -> str:
    return format(value, "f")


def accounts_to_csv(
    accounts: Iterable[Account],
    totals: LedgerTotals,
    now: Optional[datetime] = None,
) -> str:
    now = now or utc_now()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(ACCOUNT_COLUMNS)

    for account in accounts:
        current = _number(account.balance)
        writer.writerow([
            account.name, account.type.value, current, format_date_time(now),
            current, _number(ZERO), _number(ZERO), _number(ZERO),
        ])
        for update in account.updates:
            writer.writerow([
                account.name,
                account.type.value,
                current,
                format_date_time(update.date),
                _number(update.balance),
                _number(update.input_income),
                _number(update.input_expense),
                _number(update.balance_based_expense),
            ])

    writer.writerow([
        "TOTAL", "", _number(totals.balance), format_date_time(now),
        _number(totals.balance),
        _number(totals.input_income),
        _number(totals.input_expense),
        _number(totals.balance_based_expense),
    ])
    return buffer.getvalue()


def transactions_to_csv(transactions: Iterable[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(TRANSACTION_COLUMNS)
    for t in transactions:
        writer.writerow([
            t.id,
            t.type.value,
            t.date_time.isoformat(),
            ";".join(t.tags),
            _number(t.amount),
            t.description,
            t.account or "",
            t.from_account or "",
            t.to_account or "",
        ])
    return buffer.getvalue()
