"""
Ledger Repository

Typed entity access on top of a key-value store. Components never build
keys or parse JSON themselves; they go through this class.

Loading is forgiving by design of the product: a corrupt collection is
replaced in memory by a well-defined default (and logged), never a crash.
First run (no data and no meta marker) seeds the sample dataset.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from ledgerbook.models.ledger import (
    PRELOADED_TAGS,
    Account,
    TagStat,
    Transaction,
    default_accounts,
    default_tags,
    default_transactions,
    utc_now,
)
from ledgerbook.services.storage.interface import (
    ACCOUNT_PREFIX,
    TAGS_KEY,
    TRANSACTION_PREFIX,
    KeyValueBackend,
    ParseError,
    account_key,
    transaction_key,
)


META_KEY = "meta"
SCHEMA_VERSION = 1

logger = structlog.get_logger(__name__)


class LedgerState(BaseModel):
    """Everything the ledger keeps, as loaded at startup."""

    accounts: list[Account] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    tags: list[TagStat] = Field(default_factory=list)
    tags_recovered: bool = Field(
        default=False,
        description="Stored tags were unreadable and replaced in memory; do not write them back on load",
    )


def ensure_preloaded_tags(tags: list[TagStat], now: Optional[datetime] = None) -> list[TagStat]:
    """Deduplicate by name (first wins) and append any missing preloaded tag."""
    now = now or utc_now()
    unique: dict[str, TagStat] = {}
    for tag in tags:
        unique.setdefault(tag.name, tag)
    for name in PRELOADED_TAGS:
        if name not in unique:
            unique[name] = TagStat(name=name, created_at=now)
    return list(unique.values())


class LedgerRepository:
    """
    Entity-level persistence for accounts, transactions and tags.

    Every write is an overwrite by key (idempotent, last write wins).
    """

    def __init__(self, store: KeyValueBackend):
        self._store = store

    @property
    def store(self) -> KeyValueBackend:
        return self._store

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def save_account(self, account: Account) -> None:
        await self._store.set(account_key(account.name), account.to_document())

    async def get_account(self, name: str) -> Optional[Account]:
        document = await self._store.get(account_key(name))
        if document is None:
            return None
        return _parse(Account, document, account_key(name))

    async def get_all_accounts(self) -> list[Account]:
        accounts = []
        for key in await self._store.list_keys(ACCOUNT_PREFIX):
            document = await self._store.get(key)
            if document is not None:
                accounts.append(_parse(Account, document, key))
        return accounts

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def save_transaction(self, transaction: Transaction) -> None:
        await self._store.set(transaction_key(transaction.id), transaction.to_document())

    async def delete_transaction(self, transaction_id: str) -> bool:
        return await self._store.delete(transaction_key(transaction_id))

    async def get_all_transactions(self) -> list[Transaction]:
        """All transactions, newest first."""
        transactions = []
        for key in await self._store.list_keys(TRANSACTION_PREFIX):
            document = await self._store.get(key)
            if document is not None:
                transactions.append(_parse(Transaction, document, key))
        transactions.sort(key=lambda t: t.date_time, reverse=True)
        return transactions

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def save_tags(self, tags: list[TagStat]) -> list[TagStat]:
        """Store the whole tag collection; preloaded tags are always included."""
        tags = ensure_preloaded_tags(tags)
        await self._store.set(TAGS_KEY, [tag.to_document() for tag in tags])
        return tags

    async def get_all_tags(self) -> list[TagStat]:
        documents = await self._store.get(TAGS_KEY)
        if documents is None:
            return []
        if not isinstance(documents, list):
            raise ParseError(f"{TAGS_KEY!r} does not hold a list")
        return [_parse(TagStat, document, TAGS_KEY) for document in documents]

    # -------------------------------------------------------------------------
    # Whole dataset
    # -------------------------------------------------------------------------

    async def is_initialized(self) -> bool:
        return await self._store.get(META_KEY) is not None

    async def mark_initialized(self) -> None:
        await self._store.set(
            META_KEY,
            {"schemaVersion": SCHEMA_VERSION, "initializedAt": utc_now().isoformat()},
        )

    async def load(self, seed_defaults: bool = True) -> LedgerState:
        """
        Load accounts, transactions and tags.

        - First run: seed the sample dataset (if enabled) and persist it
        - Corrupt collection: substitute its default and log, never crash
        - Tags: preloaded names are always present afterwards
        """
        first_run = not await self.is_initialized()

        try:
            accounts = await self.get_all_accounts()
        except ParseError as e:
            logger.error("parse_error_recovered", collection="accounts", error=str(e))
            accounts = default_accounts()

        try:
            transactions = await self.get_all_transactions()
        except ParseError as e:
            logger.error("parse_error_recovered", collection="transactions", error=str(e))
            transactions = default_transactions()

        tags_recovered = False
        try:
            tags = await self.get_all_tags()
        except ParseError as e:
            logger.error("parse_error_recovered", collection="tags", error=str(e))
            tags = []
            tags_recovered = True

        if first_run:
            if seed_defaults and not accounts and not transactions:
                accounts = default_accounts()
                transactions = default_transactions()
                tags = tags or default_tags()
                for account in accounts:
                    await self.save_account(account)
                for transaction in transactions:
                    await self.save_transaction(transaction)
                logger.info(
                    "default_dataset_seeded",
                    accounts=len(accounts),
                    transactions=len(transactions),
                )
            await self.mark_initialized()

        # A corrupt tag document stays on disk; defaults live in memory only
        if tags_recovered:
            tags = ensure_preloaded_tags(tags)
        else:
            tags = await self.save_tags(tags)
        return LedgerState(
            accounts=accounts,
            transactions=transactions,
            tags=tags,
            tags_recovered=tags_recovered,
        )

    async def clear_cache(self) -> None:
        """Remove everything from the store."""
        await self._store.clear()


def _parse(model, document, key: str):
    try:
        return model.model_validate(document)
    except ValidationError as e:
        raise ParseError(f"Stored value for {key!r} does not match {model.__name__}: {e}")
