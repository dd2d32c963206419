"""
Core Data Models for Ledgerbook

These models define the schemas for everything the ledger persists:
accounts with their balance-update history, transactions, and tag
statistics.

DESIGN DECISION: Field names are snake_case in Python but serialize to
camelCase (inputIncome, dateTime, fromAccount, ...) so stored documents
keep the same shape no matter which backend wrote them.

All instants are timezone-aware UTC. Naive datetimes are assumed to be UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Tags that always exist and can be neither renamed nor deleted
PRELOADED_TAGS: tuple[str, ...] = ("trip", "train", "petrol", "house")


def utc_now() -> datetime:
    """Current instant, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LedgerModel(BaseModel):
    """Base for persisted models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self) -> dict:
        """JSON-compatible dict in the stored (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Kinds of account the ledger tracks."""
    SAVINGS = "Savings Bank Account"
    CREDIT_CARD = "Credit Card"
    LOAN_OR_MISC = "Loan and Misc"
    CURRENT_ACCOUNT = "Current Account"


class TransactionType(str, Enum):
    """
    Transaction direction.

    Amounts are always positive; the type decides the sign.
    """
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountUpdate(LedgerModel):
    """
    One manually reported balance and what the ledger made of it.

    Immutable once created. balance_based_expense is kept signed: a
    negative value means the balance grew more than logged income explains.
    """

    model_config = ConfigDict(frozen=True)

    date: datetime = Field(
        ...,
        description="When the balance was reported (UTC)"
    )
    balance: Decimal = Field(
        ...,
        description="Reported balance at that instant"
    )
    input_income: Decimal = Field(
        default=Decimal("0"),
        description="Logged income and incoming transfers since the prior update"
    )
    input_expense: Decimal = Field(
        default=Decimal("0"),
        description="Logged expenses and outgoing transfers since the prior update"
    )
    balance_based_expense: Decimal = Field(
        default=Decimal("0"),
        description="previous balance + input income - reported balance"
    )

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return to_utc(v)

    @property
    def unexplained_expense(self) -> Decimal:
        """Outflow not captured by any logged transaction."""
        return self.balance_based_expense - self.input_expense


class Account(LedgerModel):
    """
    A tracked account.

    The name is the identity key. updates is newest first; only the
    reconciliation operation appends to it.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Unique account name"
    )
    type: AccountType = Field(
        default=AccountType.SAVINGS,
        description="Account type"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance (signed)"
    )
    updates: list[AccountUpdate] = Field(
        default_factory=list,
        description="Balance-update history, newest first"
    )

    @property
    def latest_update(self) -> Optional[AccountUpdate]:
        return self.updates[0] if self.updates else None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(LedgerModel):
    """
    A logged expense, income or transfer.

    Expenses and incomes reference one account; transfers reference a
    distinct from/to pair. References are not checked against existing
    accounts here, see the validation package for that.
    """

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        min_length=1,
        description="Unique transaction id"
    )
    type: TransactionType = Field(
        ...,
        description="expense, income or transfer"
    )
    date_time: datetime = Field(
        default_factory=utc_now,
        description="When the transaction happened (stored as UTC)"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount; direction comes from the type"
    )
    tags: list[str] = Field(
        default_factory=list,
        description="Tag names, no duplicates"
    )
    description: str = Field(
        default="",
        max_length=1000,
    )
    account: Optional[str] = None
    from_account: Optional[str] = None
    to_account: Optional[str] = None

    @field_validator('date_time')
    @classmethod
    def normalize_date_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator('account', 'from_account', 'to_account', mode='before')
    @classmethod
    def blank_account_is_none(cls, v):
        """Forms submit unused account fields as empty strings."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        tags = [tag.strip() for tag in v]
        if any(not tag for tag in tags):
            raise ValueError("Tag names cannot be blank")
        if len(set(tags)) != len(tags):
            raise ValueError("Duplicate tags are not allowed")
        return tags

    @model_validator(mode='after')
    def validate_accounts(self) -> 'Transaction':
        """Exactly one of account or the from/to pair, depending on type."""
        if self.type == TransactionType.TRANSFER:
            if not self.from_account or not self.to_account:
                raise ValueError("Transfers need both a from and a to account")
            if self.from_account == self.to_account:
                raise ValueError("Cannot transfer to the same account")
            if self.account:
                raise ValueError("Transfers use from/to accounts, not account")
        else:
            if not self.account:
                raise ValueError(f"An {self.type.value} needs an account")
            if self.from_account or self.to_account:
                raise ValueError(f"An {self.type.value} cannot have from/to accounts")
        return self

    def touches(self, account_name: str) -> bool:
        """True if the transaction references the account on any side."""
        return account_name in (self.account, self.from_account, self.to_account)


# =============================================================================
# TAGS
# =============================================================================

class TagStat(LedgerModel):
    """
    Usage statistics for one tag.

    Only name and created_at come from the user; the rest is derived from
    the transaction log and overwritten on every recomputation.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    created_at: datetime = Field(
        default_factory=utc_now,
    )
    transaction_count: int = Field(
        default=0,
        ge=0,
    )
    total_amount: Decimal = Field(
        default=Decimal("0"),
        description="Income minus expenses carrying this tag"
    )
    last_used: Optional[datetime] = None

    @field_validator('created_at', 'last_used')
    @classmethod
    def normalize_instants(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None

    @property
    def is_preloaded(self) -> bool:
        return self.name in PRELOADED_TAGS


class LedgerTotals(BaseModel):
    """
    Cross-account totals.

    balance is the sum of current balances; the other three sum only the
    latest update of each account ("since last check-in").
    """

    balance: Decimal = Decimal("0")
    input_income: Decimal = Decimal("0")
    input_expense: Decimal = Decimal("0")
    balance_based_expense: Decimal = Decimal("0")


# =============================================================================
# FIRST-RUN DATA
# =============================================================================

def default_accounts() -> list[Account]:
    """Accounts created when nothing has been stored yet."""
    return [
        Account(name="Axis Bank", type=AccountType.SAVINGS, balance=Decimal("15000")),
        Account(name="ICICI Credit Card", type=AccountType.CREDIT_CARD, balance=Decimal("-4000")),
        Account(name="HDFC Bank", type=AccountType.CURRENT_ACCOUNT, balance=Decimal("25000")),
    ]


def default_transactions(now: Optional[datetime] = None) -> list[Transaction]:
    """Sample transactions shown on first run, newest first."""
    now = now or utc_now()
    return [
        Transaction(
            id="1",
            type=TransactionType.EXPENSE,
            date_time=now,
            tags=["trip", "petrol"],
            amount=Decimal("2000"),
            description="Road trip fuel expenses",
            account="Axis Bank",
        ),
        Transaction(
            id="2",
            type=TransactionType.EXPENSE,
            date_time=now,
            tags=["train"],
            amount=Decimal("1500"),
            description="Train tickets for weekend getaway",
            account="ICICI Credit Card",
        ),
        Transaction(
            id="3",
            type=TransactionType.EXPENSE,
            date_time=now,
            tags=["house"],
            amount=Decimal("5000"),
            description="Monthly rent payment",
            account="HDFC Bank",
        ),
        Transaction(
            id="4",
            type=TransactionType.INCOME,
            date_time=now,
            tags=["house"],
            amount=Decimal("50000"),
            description="Monthly salary",
            account="Axis Bank",
        ),
    ]


def default_tags(now: Optional[datetime] = None) -> list[TagStat]:
    """The preloaded tag palette with zeroed statistics."""
    now = now or utc_now()
    return [TagStat(name=name, created_at=now) for name in PRELOADED_TAGS]
