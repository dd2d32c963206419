"""
Main Orchestrator for Ledgerbook

This module ties together all the components and defines the
user-facing operations:
1. Accounts (add, report balance → reconcile, totals)
2. Transactions (add, edit, delete, filter)
3. Tags (create, rename, delete, sorted view)
4. Backups and exports

DESIGN DECISION: The orchestrator enforces the ordering of every mutation:
- Validate input (ValidationError is the only error that reaches the user)
- Persist through the store (remote with local fallback)
- Apply the change in memory
- Recompute derived tag statistics from the full transaction log

One store instance is created per process and passed to every component
that needs durability.
"""

from datetime import date, datetime
from typing import Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ledgerbook.audit import LedgerEventLogger, configure_logging, create_correlation_id
from ledgerbook.backup import BackupScheduler, create_sink
from ledgerbook.config import Settings, get_settings
from ledgerbook.export import accounts_to_csv, transactions_to_csv
from ledgerbook.ledger import (
    AccountLedger,
    TagAggregator,
    TagManager,
    TransactionLog,
)
from ledgerbook.models.backup import BackupSnapshot
from ledgerbook.models.ledger import (
    Account,
    AccountType,
    AccountUpdate,
    LedgerTotals,
    TagStat,
    Transaction,
    utc_now,
)
from ledgerbook.services.storage import (
    LedgerRepository,
    LedgerState,
    open_store,
)
from ledgerbook.validation import (
    TransactionValidator,
    ValidationError,
    build_transaction,
    parse_amount,
)


class LedgerOrchestrator:
    """
    Entry point for every user action.

    Holds the in-memory state (transaction log, account ledger, tag
    aggregator) for one user session.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        state: Optional[LedgerState] = None,
        clock: Callable[[], datetime] = utc_now,
        event_logger: Optional[LedgerEventLogger] = None,
        backup: Optional[BackupScheduler] = None,
    ):
        state = state or LedgerState()
        self._repository = repository
        self._clock = clock
        self._events = event_logger or LedgerEventLogger()
        self._backup = backup

        self.transactions = TransactionLog(state.transactions)
        self.ledger = AccountLedger(
            repository,
            self.transactions,
            accounts=state.accounts,
            clock=clock,
            event_logger=self._events,
        )
        self.aggregator = TagAggregator(state.tags, event_logger=self._events)
        self.tags = TagManager(
            self.aggregator,
            self.transactions,
            repository,
            event_logger=self._events,
        )

    @classmethod
    async def load(
        cls,
        repository: LedgerRepository,
        seed_defaults: bool = True,
        **kwargs,
    ) -> "LedgerOrchestrator":
        """
        Load persisted state and bring tag statistics up to date.

        Recovered tags are recomputed in memory only; the stored document
        is replaced by the next tag write.
        """
        state = await repository.load(seed_defaults=seed_defaults)
        orchestrator = cls(repository, state, **kwargs)
        if state.tags_recovered:
            orchestrator.aggregator.recompute(orchestrator.transactions)
        else:
            await orchestrator.tags.refresh()
        return orchestrator

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    @property
    def backup(self) -> Optional[BackupScheduler]:
        return self._backup

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @property
    def accounts(self) -> list[Account]:
        return self.ledger.accounts

    async def add_account(
        self,
        name: str,
        account_type: Union[AccountType, str] = AccountType.SAVINGS,
        balance=0,
    ) -> Account:
        opening = parse_amount(balance, field="balance")
        try:
            account = Account(name=name, type=account_type, balance=opening)
        except PydanticValidationError as e:
            error = e.errors()[0]
            raise ValidationError(str(error["loc"][0]), error["msg"])
        return await self.ledger.add_account(account)

    async def report_balance(self, account_name: str, reported_balance) -> AccountUpdate:
        """Reconcile an account against a newly reported balance."""
        return await self.ledger.reconcile(account_name, reported_balance)

    def totals(self) -> LedgerTotals:
        return self.ledger.totals()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _check_references(self, transaction: Transaction) -> Transaction:
        try:
            return TransactionValidator(self.ledger.names()).validate(transaction)
        except ValidationError as e:
            self._events.validation_failed(e.field, e.message)
            raise

    async def add_transaction(self, data: Union[dict, Transaction]) -> Transaction:
        """
        Log a new transaction.

        New tag names are created, then statistics are recomputed.
        """
        correlation_id = create_correlation_id()
        transaction = data if isinstance(data, Transaction) else build_transaction(data)
        if transaction.id in self.transactions:
            self._events.validation_failed("id", f"transaction {transaction.id!r} already exists")
            raise ValidationError("id", f"transaction {transaction.id!r} already exists")
        self._check_references(transaction)

        await self._repository.save_transaction(transaction)
        self.transactions.append(transaction)
        self._events.transaction_added(transaction, correlation_id)

        await self.tags.ensure(transaction.tags)
        await self.tags.refresh()
        return transaction

    async def update_transaction(
        self,
        transaction_id: str,
        patch: Union[dict, Transaction],
    ) -> Transaction:
        """Edit a transaction in place; its id never changes."""
        updated = self.transactions.merge(transaction_id, patch)
        self._check_references(updated)

        await self._repository.save_transaction(updated)
        self.transactions.update(transaction_id, updated)
        self._events.transaction_updated(updated)

        await self.tags.ensure(updated.tags)
        await self.tags.refresh()
        return updated

    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction. Unknown ids are a no-op."""
        if transaction_id not in self.transactions:
            self._events.transaction_deleted(transaction_id, existed=False)
            return False

        await self._repository.delete_transaction(transaction_id)
        self.transactions.remove(transaction_id)
        self._events.transaction_deleted(transaction_id, existed=True)

        await self.tags.refresh()
        return True

    def filter_transactions(
        self,
        start_day: Optional[date] = None,
        end_day: Optional[date] = None,
        tag: Optional[str] = None,
    ) -> list[Transaction]:
        """History view: optional whole-day date range and tag filter."""
        view = self.transactions.in_date_range(start_day, end_day)
        if tag is not None and tag != "all":
            view = view.filter(lambda t: tag in t.tags)
        return list(view)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def sorted_tags(self, option: str = "lexical", direction: str = "asc") -> list[TagStat]:
        return self.tags.sorted(option, direction)

    async def create_tag(self, name: str) -> TagStat:
        return await self.tags.create(name)

    async def rename_tag(self, old_name: str, new_name: str) -> list[TagStat]:
        return await self.tags.rename(old_name, new_name)

    async def delete_tag(self, name: str) -> list[TagStat]:
        return await self.tags.delete(name)

    # -------------------------------------------------------------------------
    # Export, backup, lifecycle
    # -------------------------------------------------------------------------

    def export_accounts_csv(self) -> str:
        return accounts_to_csv(self.accounts, self.totals(), now=self._clock())

    def export_transactions_csv(self, transactions: Optional[list[Transaction]] = None) -> str:
        return transactions_to_csv(self.transactions.all() if transactions is None else transactions)

    async def backup_now(self) -> Optional[BackupSnapshot]:
        if self._backup is None:
            return None
        return await self._backup.run_once()

    async def clear_all(self) -> None:
        """Wipe the store. In-memory state is left for the caller to discard."""
        await self._repository.clear_cache()

    async def shutdown(self) -> None:
        """Stop the backup timer and release store connections."""
        if self._backup is not None:
            await self._backup.stop()
        await self._repository.store.close()


async def create_app_components(
    settings: Optional[Settings] = None,
    start_backup: bool = True,
) -> LedgerOrchestrator:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to the cached process settings.
        start_backup: Start the periodic backup task (needs a running loop).

    Returns:
        A loaded LedgerOrchestrator
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(debug=app_settings.debug_mode)

    store = await open_store(settings.kv, settings.local_storage)
    repository = LedgerRepository(store)

    backup_settings = settings.backup
    backup = None
    if backup_settings.enabled:
        backup = BackupScheduler(
            store,
            create_sink(backup_settings),
            interval_seconds=backup_settings.interval_seconds,
        )

    orchestrator = await LedgerOrchestrator.load(
        repository,
        seed_defaults=app_settings.seed_defaults,
        backup=backup,
    )
    if backup is not None and start_backup:
        backup.start()
    return orchestrator
