"""Event logging package."""

from ledgerbook.audit.logger import (
    LedgerEventLogger,
    configure_logging,
    create_correlation_id,
    get_logger,
)

__all__ = [
    "LedgerEventLogger",
    "configure_logging",
    "create_correlation_id",
    "get_logger",
]
