"""Input validation package."""

from ledgerbook.validation.validator import (
    TransactionValidator,
    ValidationError,
    build_transaction,
    parse_amount,
    validate_tag_name,
)

__all__ = [
    "TransactionValidator",
    "ValidationError",
    "build_transaction",
    "parse_amount",
    "validate_tag_name",
]
