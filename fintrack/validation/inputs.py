"""
Input Schemas for Ledger Operations

Each ledger operation accepts either one of these models or a plain dict
with the same fields. Shape checks live here; existence checks (does the
account exist, is it the caller's) belong to the ledger services.
"""

import datetime as dt
from datetime import date
from typing import Annotated, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fintrack.money import ZERO
from fintrack.models.ledger import (
    AccountClassification,
    AccountType,
    BudgetStatus,
    Money,
    TransactionType,
)

PositiveMoney = Annotated[Money, Field(gt=0)]


class _Input(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class CreateAccountInput(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType
    classification: Optional[AccountClassification] = None
    opening_balance: Money = ZERO
    credit_limit: Optional[Money] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class CreateTransactionInput(_Input):
    account_id: UUID
    category_id: Optional[UUID] = None
    amount: PositiveMoney
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    transaction_type: Literal["debit", "credit", "transfer"]
    transaction_date: date
    description: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_reviewed: Optional[bool] = None


class CreateTransferInput(_Input):
    from_account_id: UUID
    to_account_id: UUID
    amount: PositiveMoney
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    transaction_date: date
    description: str = Field(default="Transfer", min_length=1, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


class UpdateTransactionInput(_Input):
    """Only the fields present are changed."""

    amount: Optional[PositiveMoney] = None
    transaction_type: Optional[TransactionType] = None
    category_id: Optional[UUID] = None
    transaction_date: Optional[date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_reviewed: Optional[bool] = None

    @model_validator(mode='after')
    def require_a_change(self) -> 'UpdateTransactionInput':
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class BulkCategorizeInput(_Input):
    transaction_ids: list[UUID] = Field(..., min_length=1, max_length=500)
    category_id: UUID


class GenerateInstanceInput(_Input):
    """Amount is required for variable templates, optional for fixed ones."""

    amount: Optional[PositiveMoney] = None


class DebtPaymentInput(_Input):
    amount: PositiveMoney
    principal_amount: Optional[Money] = None
    interest_amount: Optional[Money] = None
    payment_date: date
    transaction_id: Optional[UUID] = None


class UpdateDebtPaymentInput(_Input):
    amount: Optional[PositiveMoney] = None
    principal_amount: Optional[Money] = None
    interest_amount: Optional[Money] = None
    payment_date: Optional[date] = None


class ContributionInput(_Input):
    amount: PositiveMoney
    contribution_date: date
    transaction_id: Optional[UUID] = None
    source: Optional[str] = Field(default=None, max_length=50)


class UpdateContributionInput(_Input):
    amount: Optional[PositiveMoney] = None
    contribution_date: Optional[date] = None
    source: Optional[str] = Field(default=None, max_length=50)


class CreateBudgetInput(_Input):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    notes: Optional[str] = Field(default=None, max_length=1000)


class BudgetItemInput(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    category_id: Optional[UUID] = None
    planned_amount: Annotated[Money, Field(ge=0)]


class BudgetIncomeInput(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    expected_amount: Annotated[Money, Field(ge=0)]


class PlannedOneOffInput(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Annotated[Money, Field(ge=0)]
    planned_date: Optional[date] = None
    is_completed: bool = False


class BudgetStatusInput(_Input):
    status: BudgetStatus


class _UpdateInput(_Input):
    """Only the fields present are changed."""

    @model_validator(mode='after')
    def require_a_change(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class UpdateBudgetItemInput(_UpdateInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category_id: Optional[UUID] = None
    planned_amount: Optional[Annotated[Money, Field(ge=0)]] = None


class UpdateBudgetIncomeInput(_UpdateInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    expected_amount: Optional[Annotated[Money, Field(ge=0)]] = None


class UpdatePlannedOneOffInput(_UpdateInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Annotated[Money, Field(ge=0)]] = None
    planned_date: Optional[date] = None
    is_completed: Optional[bool] = None


class TrackerEntryInput(_Input):
    """A hand-entered forecast day."""

    date: dt.date
    expected_income: Money = ZERO
    expected_debt_payments: Money = ZERO
    expected_expenses: Money = ZERO
    predicted_spend: Money = ZERO
    manual_override: Optional[Money] = None
    running_balance: Money = ZERO
    is_payday: bool = False


class UpdateTrackerEntryInput(_UpdateInput):
    """``manual_override`` may be set to None to clear it."""

    expected_income: Optional[Money] = None
    expected_debt_payments: Optional[Money] = None
    expected_expenses: Optional[Money] = None
    predicted_spend: Optional[Money] = None
    manual_override: Optional[Money] = None
    running_balance: Optional[Money] = None
    is_payday: Optional[bool] = None


class DateRangeInput(_Input):
    start_date: date
    end_date: date

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRangeInput':
        if self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1
