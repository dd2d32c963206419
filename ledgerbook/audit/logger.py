"""
Ledger Event Logger

DESIGN DECISION: Every mutation of the ledger is logged as a structured
event. This provides:
1. Traceability of how a balance figure came about
2. Debugging capability when residuals look wrong
3. A record of storage fallbacks and backup failures

The event logger:
- Writes structured JSON lines through structlog
- Is synchronous and cheap, so it can sit inside atomic operations
- Supports correlation IDs to trace one user action across components
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledgerbook.models.ledger import Account, AccountUpdate, Transaction


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """Route structlog output through the stdlib root handler."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if debug else logging.INFO,
    )


def get_logger(name: Optional[str] = None):
    """Module-level structured logger."""
    return structlog.get_logger(name)


def _amount(value: Decimal) -> str:
    return format(value, "f")


class LedgerEventLogger:
    """
    Central logging for ledger events.

    One method per event kind so call sites stay short and field names
    stay consistent across the codebase.
    """

    def __init__(self, logger=None):
        self._logger = logger or structlog.get_logger("ledgerbook.events")

    def _emit(self, level: str, event: str, **fields) -> None:
        getattr(self._logger, level)(event, **fields)

    def account_added(self, account: Account, correlation_id: Optional[UUID] = None) -> None:
        self._emit(
            "info",
            "account_added",
            account=account.name,
            account_type=account.type.value,
            balance=_amount(account.balance),
            correlation_id=str(correlation_id) if correlation_id else None,
        )

    def balance_reconciled(
        self,
        account: Account,
        update: AccountUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a reconciliation; warns when spending went unlogged."""
        unexplained = update.unexplained_expense
        self._emit(
            "warning" if unexplained > 0 else "info",
            "balance_reconciled",
            account=account.name,
            balance=_amount(update.balance),
            input_income=_amount(update.input_income),
            input_expense=_amount(update.input_expense),
            balance_based_expense=_amount(update.balance_based_expense),
            unexplained_expense=_amount(unexplained),
            update_count=len(account.updates),
            correlation_id=str(correlation_id) if correlation_id else None,
        )

    def transaction_added(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._emit(
            "info",
            "transaction_added",
            transaction_id=transaction.id,
            transaction_type=transaction.type.value,
            amount=_amount(transaction.amount),
            tags=list(transaction.tags),
            correlation_id=str(correlation_id) if correlation_id else None,
        )

    def transaction_updated(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._emit(
            "info",
            "transaction_updated",
            transaction_id=transaction.id,
            amount=_amount(transaction.amount),
            correlation_id=str(correlation_id) if correlation_id else None,
        )

    def transaction_deleted(self, transaction_id: str, existed: bool) -> None:
        self._emit(
            "info",
            "transaction_deleted",
            transaction_id=transaction_id,
            existed=existed,
        )

    def tags_recomputed(self, tag_count: int, transaction_count: int) -> None:
        self._emit(
            "debug",
            "tags_recomputed",
            tag_count=tag_count,
            transaction_count=transaction_count,
        )

    def tag_created(self, name: str) -> None:
        self._emit("info", "tag_created", tag=name)

    def tag_renamed(self, old_name: str, new_name: str, affected: int) -> None:
        self._emit(
            "info",
            "tag_renamed",
            old_tag=old_name,
            new_tag=new_name,
            affected_transactions=affected,
        )

    def tag_deleted(self, name: str, affected: int) -> None:
        self._emit("info", "tag_deleted", tag=name, affected_transactions=affected)

    def protected_tag_rejected(self, name: str, action: str) -> None:
        self._emit("warning", "protected_tag_rejected", tag=name, action=action)

    def validation_failed(self, field: str, message: str) -> None:
        self._emit("warning", "validation_failed", field=field, message=message)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g. a balance report).
    """
    return uuid4()
