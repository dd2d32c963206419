"""
Tag Statistics

Tag statistics are derived data: every change to the transaction log
triggers a full recomputation from the whole log. Only a tag's name and
created_at come from the user and survive recomputation.

Per tag:
- transaction_count  every transaction carrying it, transfers included
- total_amount       +amount for income, -amount for expense, transfers add 0
- last_used          latest date_time of a transaction carrying it

The preloaded tags (trip, train, petrol, house) are always present and
can be neither renamed nor deleted.

A full recompute is O(transactions x tags). An index maintained on each
log mutation would scale further at the cost of more update paths; at
personal scale the recompute is the simpler choice.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from ledgerbook.audit.logger import LedgerEventLogger
from ledgerbook.ledger.transactions import TransactionLog
from ledgerbook.models.ledger import (
    PRELOADED_TAGS,
    TagStat,
    Transaction,
    TransactionType,
    utc_now,
)
from ledgerbook.services.storage.repository import LedgerRepository, ensure_preloaded_tags
from ledgerbook.validation.validator import validate_tag_name


SORT_OPTIONS = ("lexical", "time", "transactionCount", "totalAmount", "recentlyUsed")


class ProtectedTagError(ValueError):
    """Preloaded tags cannot be renamed or deleted."""
    pass


def recompute_tags(
    transactions: Iterable[Transaction],
    existing: Iterable[TagStat] = (),
    now: Optional[datetime] = None,
) -> list[TagStat]:
    """
    Rebuild every TagStat from scratch.

    Tags seen only in transactions get created_at = their first use.
    Missing preloaded tags get created_at = now.
    """
    now = now or utc_now()
    created: dict[str, datetime] = {}
    counts: dict[str, int] = {}
    totals: dict[str, Decimal] = {}
    last_used: dict[str, Optional[datetime]] = {}

    def track(name: str, created_at: datetime) -> None:
        if name not in created:
            created[name] = created_at
            counts[name] = 0
            totals[name] = Decimal("0")
            last_used[name] = None

    for tag in existing:
        track(tag.name, tag.created_at)

    transactions = list(transactions)
    first_use: dict[str, datetime] = {}
    for t in transactions:
        for name in t.tags:
            if name not in first_use or t.date_time < first_use[name]:
                first_use[name] = t.date_time

    for t in transactions:
        if t.type == TransactionType.INCOME:
            signed = t.amount
        elif t.type == TransactionType.EXPENSE:
            signed = -t.amount
        else:
            signed = Decimal("0")

        for name in t.tags:
            track(name, first_use[name])
            counts[name] += 1
            totals[name] += signed
            if last_used[name] is None or t.date_time > last_used[name]:
                last_used[name] = t.date_time

    for name in PRELOADED_TAGS:
        track(name, now)

    return [
        TagStat(
            name=name,
            created_at=created[name],
            transaction_count=counts[name],
            total_amount=totals[name],
            last_used=last_used[name],
        )
        for name in created
    ]


def sort_tags(tags: Iterable[TagStat], option: str = "lexical", direction: str = "asc") -> list[TagStat]:
    """
    Order tags for display.

    In "asc" direction names sort A-Z and every other option puts the
    newest/largest first; "desc" reverses that.
    """
    if option not in SORT_OPTIONS:
        raise ValueError(f"Unknown sort option: {option}")

    tags = list(tags)
    if option == "lexical":
        ordered = sorted(tags, key=lambda t: t.name.lower())
    elif option == "time":
        ordered = sorted(tags, key=lambda t: t.created_at, reverse=True)
    elif option == "transactionCount":
        ordered = sorted(tags, key=lambda t: t.transaction_count, reverse=True)
    elif option == "totalAmount":
        ordered = sorted(tags, key=lambda t: t.total_amount, reverse=True)
    else:
        ordered = sorted(
            tags,
            key=lambda t: t.last_used.timestamp() if t.last_used else float("-inf"),
            reverse=True,
        )

    return ordered if direction == "asc" else list(reversed(ordered))


class TagAggregator:
    """Holds the current tag collection and rebuilds it from the log."""

    def __init__(
        self,
        tags: Optional[Iterable[TagStat]] = None,
        event_logger: Optional[LedgerEventLogger] = None,
    ):
        self._tags: list[TagStat] = ensure_preloaded_tags(list(tags or []))
        self._events = event_logger or LedgerEventLogger()

    @property
    def tags(self) -> list[TagStat]:
        return list(self._tags)

    def get(self, name: str) -> Optional[TagStat]:
        for tag in self._tags:
            if tag.name == name:
                return tag
        return None

    def names(self) -> list[str]:
        return [tag.name for tag in self._tags]

    def replace(self, tags: Iterable[TagStat]) -> list[TagStat]:
        self._tags = ensure_preloaded_tags(list(tags))
        return self.tags

    def recompute(self, transactions: TransactionLog, now: Optional[datetime] = None) -> list[TagStat]:
        transactions = transactions.all()
        self._tags = recompute_tags(transactions, self._tags, now=now)
        self._events.tags_recomputed(len(self._tags), len(transactions))
        return self.tags


class TagManager:
    """
    User-facing tag operations: create, rename, delete.

    Renames and deletes persist the rewritten transactions before the log
    sees them, then recompute and persist the tag collection.
    """

    def __init__(
        self,
        aggregator: TagAggregator,
        transactions: TransactionLog,
        repository: LedgerRepository,
        event_logger: Optional[LedgerEventLogger] = None,
    ):
        self._aggregator = aggregator
        self._transactions = transactions
        self._repository = repository
        self._events = event_logger or LedgerEventLogger()

    @property
    def tags(self) -> list[TagStat]:
        return self._aggregator.tags

    async def refresh(self) -> list[TagStat]:
        """Recompute statistics from the log and persist them."""
        self._aggregator.recompute(self._transactions)
        return await self.save(self._aggregator.tags)

    async def save(self, tags: Iterable[TagStat]) -> list[TagStat]:
        """Persist a tag collection (deduplicated, preloaded tags ensured)."""
        saved = await self._repository.save_tags(list(tags))
        return self._aggregator.replace(saved)

    async def create(self, raw_name: str) -> TagStat:
        """Create a tag; an existing name is returned unchanged."""
        name = validate_tag_name(raw_name)
        existing = self._aggregator.get(name)
        if existing is not None:
            return existing

        tag = TagStat(name=name)
        await self.save([*self._aggregator.tags, tag])
        self._events.tag_created(name)
        return tag

    async def ensure(self, names: Iterable[str]) -> list[TagStat]:
        """Create any of the names that do not exist yet."""
        missing = [name for name in names if self._aggregator.get(name) is None]
        if not missing:
            return []
        created = [TagStat(name=name) for name in missing]
        await self.save([*self._aggregator.tags, *created])
        for tag in created:
            self._events.tag_created(tag.name)
        return created

    async def rename(self, old_name: str, raw_new_name: str) -> list[TagStat]:
        if old_name in PRELOADED_TAGS:
            self._events.protected_tag_rejected(old_name, "rename")
            raise ProtectedTagError(f"Preloaded tag {old_name!r} cannot be renamed")
        new_name = validate_tag_name(raw_new_name)
        if new_name == old_name:
            return self.tags

        changed = self._transactions.tag_renamed(old_name, new_name)
        for transaction in changed:
            await self._repository.save_transaction(transaction)
        self._transactions.replace(changed)

        renamed = []
        for tag in self._aggregator.tags:
            if tag.name == old_name:
                tag = tag.model_copy(update={"name": new_name})
            renamed.append(tag)
        self._aggregator.replace(renamed)

        self._events.tag_renamed(old_name, new_name, len(changed))
        return await self.refresh()

    async def delete(self, name: str) -> list[TagStat]:
        if name in PRELOADED_TAGS:
            self._events.protected_tag_rejected(name, "delete")
            raise ProtectedTagError(f"Preloaded tag {name!r} cannot be deleted")

        changed = self._transactions.tag_stripped(name)
        for transaction in changed:
            await self._repository.save_transaction(transaction)
        self._transactions.replace(changed)

        self._aggregator.replace(tag for tag in self._aggregator.tags if tag.name != name)
        self._events.tag_deleted(name, len(changed))
        return await self.refresh()

    def sorted(self, option: str = "lexical", direction: str = "asc") -> list[TagStat]:
        return sort_tags(self._aggregator.tags, option, direction)
