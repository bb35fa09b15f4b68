"""
Core Ledger Models for FinTrack

These models define the records whose events drive the derived balances:
accounts, transactions, debts, savings goals and the recurring templates
that generate transactions, plus the budget slice the projection reads.

DESIGN DECISION: Every amount is a two-digit Decimal parsed by
``fintrack.money.to_money``. Floats are rejected at the model boundary so
that no binary rounding error can reach a stored balance.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)

from fintrack.money import ZERO, to_money


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Money = Annotated[Decimal, BeforeValidator(to_money)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    CHEQUE = "cheque"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    INVESTMENT = "investment"
    LOAN = "loan"
    OTHER = "other"


class AccountClassification(str, Enum):
    """
    Whether an account's balance is money the user can spend day to day.

    Only spending accounts seed the forward projection.
    """
    SPENDING = "spending"
    NON_SPENDING = "non_spending"


ACCOUNT_TYPE_CLASSIFICATION_DEFAULTS: dict[AccountType, AccountClassification] = {
    AccountType.CHEQUE: AccountClassification.SPENDING,
    AccountType.SAVINGS: AccountClassification.NON_SPENDING,
    AccountType.CREDIT_CARD: AccountClassification.SPENDING,
    AccountType.INVESTMENT: AccountClassification.NON_SPENDING,
    AccountType.LOAN: AccountClassification.NON_SPENDING,
    AccountType.OTHER: AccountClassification.SPENDING,
}

ALWAYS_NON_SPENDING_TYPES = frozenset({AccountType.INVESTMENT, AccountType.LOAN})


class TransactionType(str, Enum):
    """Sign of a transaction: debits subtract, credits add."""
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionSource(str, Enum):
    MANUAL = "manual"
    RECURRING = "recurring"


class RecurringFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurringAmountType(str, Enum):
    FIXED = "fixed"
    VARIABLE = "variable"  # amount_max is the ceiling


class BudgetStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"  # terminal, no further edits


class AggregateKind(str, Enum):
    """Records that carry a derived running total."""
    ACCOUNT = "account"
    DEBT = "debt"
    SAVINGS_GOAL = "savings_goal"


# =============================================================================
# AGGREGATES
# =============================================================================

class AggregateRef(BaseModel):
    """Points at exactly one account, debt or savings goal."""
    model_config = ConfigDict(frozen=True)

    kind: AggregateKind
    id: UUID
    user_id: UUID

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class Account(BaseModel):
    """
    A user's financial account.

    CRITICAL: ``current_balance`` is written once at creation (the opening
    balance) and afterwards only by the balance mutator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType
    classification: Optional[AccountClassification] = None
    currency: str = Field(default="ZAR", min_length=3, max_length=3)
    current_balance: Money = ZERO
    credit_limit: Optional[Money] = None
    is_active: bool = True
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def apply_classification_defaults(self) -> 'Account':
        """Fill classification from the account type; some types are never spending."""
        if self.account_type in ALWAYS_NON_SPENDING_TYPES:
            self.classification = AccountClassification.NON_SPENDING
        elif self.classification is None:
            self.classification = ACCOUNT_TYPE_CLASSIFICATION_DEFAULTS[self.account_type]
        return self

    @property
    def is_spending(self) -> bool:
        return self.classification == AccountClassification.SPENDING


class Category(BaseModel):
    """Transaction category (owned by the category collaborator)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=50)
    category_type: str = Field(default="expense", max_length=20)


class Debt(BaseModel):
    """A debt whose ``current_balance`` falls as payments are recorded."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    debt_type: str = Field(default="other", max_length=30)
    creditor: Optional[str] = Field(default=None, max_length=100)
    original_amount: Money
    current_balance: Money
    minimum_payment: Optional[Money] = None
    fixed_payment: Optional[Money] = None
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: bool = True
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SavingsGoal(BaseModel):
    """
    A savings target.

    ``is_completed`` is one-way: once a contribution reaches the target
    it stays completed even if a contribution is later reduced.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    goal_type: str = Field(default="custom", max_length=30)
    current_amount: Money = ZERO
    target_amount: Optional[Money] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    is_active: bool = True
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# LEDGER EVENTS
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger row against one account.

    ``amount`` is always positive; the sign comes from ``transaction_type``.
    Transfer legs share a ``transfer_pair_id`` and live and die together.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    account_id: UUID
    category_id: Optional[UUID] = None
    amount: Annotated[Money, Field(gt=0)]
    currency: str = Field(default="ZAR", min_length=3, max_length=3)
    transaction_type: TransactionType
    transaction_date: date
    description: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    source: TransactionSource = TransactionSource.MANUAL
    is_recurring_instance: bool = False
    recurring_id: Optional[UUID] = None
    transfer_pair_id: Optional[UUID] = None
    transfer_to_account_id: Optional[UUID] = None
    is_reviewed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_transfer_leg(self) -> bool:
        return self.transfer_pair_id is not None


class TransferResult(BaseModel):
    """Both legs of a transfer, created together."""

    debit: Transaction
    credit: Transaction


class DebtPayment(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    debt_id: UUID
    amount: Annotated[Money, Field(gt=0)]
    principal_amount: Optional[Money] = None
    interest_amount: Optional[Money] = None
    payment_date: date
    transaction_id: Optional[UUID] = None
    balance_after: Optional[Money] = None
    created_at: datetime = Field(default_factory=utcnow)


class SavingsContribution(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    savings_goal_id: UUID
    amount: Annotated[Money, Field(gt=0)]
    contribution_date: date
    transaction_id: Optional[UUID] = None
    source: Optional[str] = Field(default=None, max_length=50)
    created_at: datetime = Field(default_factory=utcnow)


class RecurringTransaction(BaseModel):
    """
    Template for a transaction that repeats.

    ``next_occurrence`` is the cursor the ledger consumes and advances;
    a template with no cursor has nothing pending.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    account_id: UUID
    category_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    amount_type: RecurringAmountType = RecurringAmountType.FIXED
    amount: Optional[Money] = None
    amount_max: Optional[Money] = None
    frequency: RecurringFrequency
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_date: date
    next_occurrence: Optional[date] = None
    last_occurrence: Optional[date] = None
    transaction_type: TransactionType
    is_active: bool = True
    requires_confirmation: Optional[bool] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def default_confirmation(self) -> 'RecurringTransaction':
        """Variable-amount templates need the user to confirm each amount."""
        if self.requires_confirmation is None:
            self.requires_confirmation = self.amount_type == RecurringAmountType.VARIABLE
        return self

    @property
    def expected_amount(self) -> Decimal:
        """Fixed amount, else the variable ceiling, else zero."""
        if self.amount is not None:
            return self.amount
        if self.amount_max is not None:
            return self.amount_max
        return ZERO


# =============================================================================
# BUDGETS (balance-neutral)
# =============================================================================

class Budget(BaseModel):
    """One month's plan. Unique per user, year and month."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    status: BudgetStatus = BudgetStatus.DRAFT
    total_planned_income: Money = ZERO
    total_planned_expenses: Money = ZERO
    unallocated_amount: Money = ZERO
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BudgetItem(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    budget_id: UUID
    category_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    planned_amount: Money


class BudgetIncome(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    budget_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    expected_amount: Money


class PlannedOneOff(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    budget_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    amount: Money
    planned_date: Optional[date] = None
    is_completed: bool = False
