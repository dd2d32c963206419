"""
Account Ledger and Reconciliation

The user periodically reports each account's real balance. Every report
becomes an AccountUpdate that explains the change since the previous
report:

    input_income          = income + transfers in, logged in the window
    input_expense         = expenses + transfers out, logged in the window
    balance_based_expense = previous balance + input_income - new balance

balance_based_expense is the total outflow the balances imply. The gap
balance_based_expense - input_expense is spending that no transaction
explains. It is kept signed: a negative gap means unexplained income
(interest, a forgotten deposit) and is never clamped.

The window is (previous update date, now], using TransactionLog.query.
With no previous update, a synthetic one at the epoch carrying the
current balance is used.

Reconciliation is all-or-nothing: input is validated first, the new
account state is persisted next, and only then is it made visible in
memory.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ledgerbook.audit.logger import LedgerEventLogger
from ledgerbook.ledger.transactions import TransactionLog
from ledgerbook.models.ledger import (
    EPOCH,
    Account,
    AccountUpdate,
    LedgerTotals,
    Transaction,
    TransactionType,
    utc_now,
)
from ledgerbook.services.storage.repository import LedgerRepository
from ledgerbook.validation.validator import parse_amount


class DuplicateAccountError(ValueError):
    """An account with this name already exists."""
    pass


class AccountNotFoundError(KeyError):
    """No account with this name."""
    pass


def attribute_transactions(
    account_name: str,
    transactions: Iterable[Transaction],
) -> tuple[Decimal, Decimal]:
    """
    Split a window's transactions into (income, expense) for one account.

    Transfers count as income on the receiving side and as expense on the
    sending side.
    """
    income = Decimal("0")
    expense = Decimal("0")
    for t in transactions:
        if t.type == TransactionType.INCOME or (
            t.type == TransactionType.TRANSFER and t.to_account == account_name
        ):
            income += t.amount
        elif t.type == TransactionType.EXPENSE or (
            t.type == TransactionType.TRANSFER and t.from_account == account_name
        ):
            expense += t.amount
    return income, expense


def compute_update(
    account: Account,
    new_balance: Decimal,
    now: datetime,
    transactions: TransactionLog,
) -> AccountUpdate:
    """Build the next AccountUpdate for an account without mutating anything."""
    previous = account.latest_update or AccountUpdate(date=EPOCH, balance=account.balance)

    # History must stay strictly descending even if the clock steps back
    if now <= previous.date:
        now = previous.date + timedelta(microseconds=1)

    window = transactions.query(account.name, previous.date, now)
    input_income, input_expense = attribute_transactions(account.name, window)

    return AccountUpdate(
        date=now,
        balance=new_balance,
        input_income=input_income,
        input_expense=input_expense,
        balance_based_expense=previous.balance + input_income - new_balance,
    )


def compute_totals(accounts: Iterable[Account]) -> LedgerTotals:
    """
    Sum balances and the latest update of each account.

    Only the head of each history counts, so this is "since last
    check-in", not an all-time total.
    """
    totals = LedgerTotals()
    for account in accounts:
        totals.balance += account.balance
        latest = account.latest_update
        if latest is not None:
            totals.input_income += latest.input_income
            totals.input_expense += latest.input_expense
            totals.balance_based_expense += latest.balance_based_expense
    return totals


class AccountLedger:
    """
    Owns accounts and their update histories.

    Mutations are serialized so they apply in the order they were issued.
    Accounts are never deleted.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        transactions: TransactionLog,
        accounts: Optional[Iterable[Account]] = None,
        clock: Callable[[], datetime] = utc_now,
        event_logger: Optional[LedgerEventLogger] = None,
    ):
        self._repository = repository
        self._transactions = transactions
        self._accounts: dict[str, Account] = {a.name: a for a in accounts or []}
        self._clock = clock
        self._events = event_logger or LedgerEventLogger()
        self._lock = asyncio.Lock()

    @property
    def accounts(self) -> list[Account]:
        return list(self._accounts.values())

    def get(self, name: str) -> Optional[Account]:
        return self._accounts.get(name)

    def names(self) -> list[str]:
        return list(self._accounts)

    def _require(self, name: str) -> Account:
        account = self._accounts.get(name)
        if account is None:
            raise AccountNotFoundError(name)
        return account

    async def add_account(self, account: Account) -> Account:
        async with self._lock:
            if account.name in self._accounts:
                raise DuplicateAccountError(f"Account already exists: {account.name}")
            await self._repository.save_account(account)
            self._accounts[account.name] = account
        self._events.account_added(account)
        return account

    async def reconcile(self, name: str, reported_balance) -> AccountUpdate:
        """
        Record a reported balance for an account.

        Raises:
            ValidationError: reported_balance is not a number (nothing changes)
            AccountNotFoundError: unknown account (nothing changes)
            StorageError: neither backend could persist (nothing changes)
        """
        new_balance = parse_amount(reported_balance, field="balance")

        async with self._lock:
            account = self._require(name)
            update = compute_update(account, new_balance, self._clock(), self._transactions)
            updated = account.model_copy(
                update={"balance": new_balance, "updates": [update, *account.updates]}
            )
            await self._repository.save_account(updated)
            self._accounts[name] = updated

        self._events.balance_reconciled(updated, update)
        return update

    def totals(self) -> LedgerTotals:
        return compute_totals(self._accounts.values())
