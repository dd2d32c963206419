"""
Input Validation

DESIGN DECISION: User input is validated before any component mutates
state. Validation failures raise ValidationError, the only error kind
that propagates to the caller of a mutation.

Two checks live here:
1. Numeric input (reported balances, amounts) must parse as a finite number
2. Transactions must reference accounts that exist

IMPORTANT: Validation NEVER silently fixes input. "12abc" is rejected,
not read as 12.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from ledgerbook.models.ledger import Transaction


class ValidationError(ValueError):
    """Malformed user input; raised before any state changes."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


def parse_amount(raw: Any, field: str = "balance") -> Decimal:
    """
    Parse user-entered numeric input.

    Accepts Decimal, int, float and numeric strings (surrounding
    whitespace and thousands separators allowed). Booleans, NaN and
    infinities are rejected.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(field, f"{raw!r} is not a number")

    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        text = raw.strip().replace(",", "")
        if not text:
            raise ValidationError(field, "a number is required")
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValidationError(field, f"{raw!r} is not a number")
    else:
        raise ValidationError(field, f"{raw!r} is not a number")

    if not value.is_finite():
        raise ValidationError(field, f"{raw!r} is not a finite number")
    return value


def build_transaction(data: dict) -> Transaction:
    """Build a Transaction from form data, reporting the first problem found."""
    try:
        return Transaction.model_validate(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or "transaction"
        raise ValidationError(field, error.get("msg", "invalid value"))


class TransactionValidator:
    """
    Checks a transaction against the current set of accounts.

    Structural rules (positive amount, no duplicate tags, transfer sides
    differ) are enforced by the Transaction model itself.
    """

    def __init__(self, account_names: Iterable[str]):
        self._account_names = set(account_names)

    def validate(self, transaction: Transaction) -> Transaction:
        for field, name in (
            ("account", transaction.account),
            ("fromAccount", transaction.from_account),
            ("toAccount", transaction.to_account),
        ):
            if name is not None and name not in self._account_names:
                raise ValidationError(field, f"unknown account {name!r}")
        return transaction


def validate_tag_name(raw: Optional[str]) -> str:
    name = (raw or "").strip()
    if not name:
        raise ValidationError("tag", "tag name cannot be blank")
    if len(name) > 100:
        raise ValidationError("tag", "tag name is too long")
    return name
