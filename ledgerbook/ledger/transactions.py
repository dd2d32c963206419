"""
Transaction Log

The in-memory, most-recent-first collection of transactions. It owns the
transaction lifecycle; persistence is the caller's job.

Window semantics matter for reconciliation: query() is exclusive of the
start instant and inclusive of the end instant, so chaining windows
across successive balance updates never counts a transaction twice.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Iterator, Optional, Union

from ledgerbook.models.ledger import Transaction, to_utc
from ledgerbook.validation.validator import build_transaction


Predicate = Callable[[Transaction], bool]


class TransactionNotFoundError(KeyError):
    """No transaction with the given id."""
    pass


class FilteredTransactions:
    """
    Lazy view over the log.

    Each iteration re-runs the predicate over the log as it is at that
    moment, so the view can be iterated any number of times.
    """

    def __init__(self, source: "TransactionLog", predicate: Predicate):
        self._source = source
        self._predicate = predicate

    def __iter__(self) -> Iterator[Transaction]:
        return (t for t in self._source.all() if self._predicate(t))

    def filter(self, predicate: Predicate) -> "FilteredTransactions":
        outer = self._predicate
        return FilteredTransactions(self._source, lambda t: outer(t) and predicate(t))


class TransactionLog:
    """Ordered transaction collection, newest first."""

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self._transactions: list[Transaction] = list(transactions or [])

    def __len__(self) -> int:
        return len(self._transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(self.all())

    def __contains__(self, transaction_id: object) -> bool:
        return any(t.id == transaction_id for t in self._transactions)

    def all(self) -> list[Transaction]:
        """Snapshot of the log, newest first."""
        return list(self._transactions)

    def get(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self._transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    def _index(self, transaction_id: str) -> int:
        for index, transaction in enumerate(self._transactions):
            if transaction.id == transaction_id:
                return index
        raise TransactionNotFoundError(transaction_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def append(self, transaction: Transaction) -> Transaction:
        """Insert at the head of the log. Ids must be unique."""
        if transaction.id in self:
            raise ValueError(f"Duplicate transaction id: {transaction.id}")
        self._transactions.insert(0, transaction)
        return transaction

    def merge(self, transaction_id: str, patch: Union[dict, Transaction]) -> Transaction:
        """
        Build the updated transaction without changing the log.

        patch is either a full Transaction or a dict of fields to change
        (snake_case or camelCase). The merged result is validated again
        and always keeps the original id.
        """
        index = self._index(transaction_id)
        if isinstance(patch, Transaction):
            changes = patch.model_dump()
        else:
            changes = dict(patch)

        merged = self._transactions[index].model_dump()
        for field, value in changes.items():
            merged[_field_name(field)] = value
        merged["id"] = transaction_id

        return build_transaction(merged)

    def update(self, transaction_id: str, patch: Union[dict, Transaction]) -> Transaction:
        """Replace a transaction in place, keeping its id and position."""
        updated = self.merge(transaction_id, patch)
        self._transactions[self._index(transaction_id)] = updated
        return updated

    def remove(self, transaction_id: str) -> Optional[Transaction]:
        """Delete by id. Unknown ids are ignored and return None."""
        try:
            index = self._index(transaction_id)
        except TransactionNotFoundError:
            return None
        return self._transactions.pop(index)

    def replace(self, transactions: Iterable[Transaction]) -> None:
        """Swap in new versions of existing transactions, matched by id."""
        for transaction in transactions:
            self._transactions[self._index(transaction.id)] = transaction

    def tag_renamed(self, old_name: str, new_name: str) -> list[Transaction]:
        """Copies of the transactions carrying old_name, retagged. The log is not changed."""
        changed = []
        for transaction in self._transactions:
            if old_name not in transaction.tags:
                continue
            tags = []
            for tag in transaction.tags:
                tag = new_name if tag == old_name else tag
                if tag not in tags:
                    tags.append(tag)
            changed.append(transaction.model_copy(update={"tags": tags}))
        return changed

    def tag_stripped(self, name: str) -> list[Transaction]:
        """Copies of the transactions carrying name, without it. The log is not changed."""
        return [
            transaction.model_copy(
                update={"tags": [tag for tag in transaction.tags if tag != name]}
            )
            for transaction in self._transactions
            if name in transaction.tags
        ]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def filter(self, predicate: Predicate) -> FilteredTransactions:
        return FilteredTransactions(self, predicate)

    def query(
        self,
        account: str,
        start: datetime,
        end: datetime,
    ) -> FilteredTransactions:
        """
        Transactions touching the account with start < date_time <= end.

        An account is touched as account, from_account or to_account.
        """
        start, end = to_utc(start), to_utc(end)
        return self.filter(
            lambda t: t.touches(account) and start < t.date_time <= end
        )

    def in_date_range(
        self,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
        tz: tzinfo = timezone.utc,
    ) -> FilteredTransactions:
        """
        Transactions from the start of start_day through the end of end_day.

        Either bound may be omitted.
        """
        start = datetime.combine(start_day, time.min, tzinfo=tz) if start_day else None
        end = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=tz) if end_day else None
        return self.filter(
            lambda t: (start is None or start <= t.date_time)
            and (end is None or t.date_time < end)
        )

    def with_tag(self, tag: Optional[str]) -> FilteredTransactions:
        """Transactions carrying the tag; None or "all" matches everything."""
        if tag is None or tag == "all":
            return self.filter(lambda t: True)
        return self.filter(lambda t: tag in t.tags)


_CAMEL_FIELDS = {
    "dateTime": "date_time",
    "fromAccount": "from_account",
    "toAccount": "to_account",
}


def _field_name(field: str) -> str:
    return _CAMEL_FIELDS.get(field, field)
