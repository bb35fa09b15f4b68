"""
Daily Tracker Models

A DailyTrackerEntry is one simulated day of the forward projection.
Entries are cache rows: a regeneration deletes every entry in its range
and writes fresh ones, hand-made edits included. ``manual_override``
holds a balance the user pinned for the day; the projection never reads
it back.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fintrack.models.ledger import Money, utcnow
from fintrack.money import ZERO, format_money


class TrackerAlert(BaseModel):
    """Something the user should look at on a projected day."""

    type: str = Field(default="negative_balance")
    severity: str = Field(default="warning", pattern="^(info|warning|critical)$")
    message: str
    running_balance: Optional[Money] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "running_balance": format_money(self.running_balance),
        }


class DailyTrackerEntry(BaseModel):
    """
    One projected day for one user.

    The detail fields record where each figure came from (which recurring
    templates matched, what the budget-derived daily figure was) so the
    day can be explained later.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    date: dt.date

    expected_income: Money = ZERO
    expected_debt_payments: Money = ZERO
    expected_expenses: Money = ZERO
    predicted_spend: Money = ZERO
    manual_override: Optional[Money] = None
    running_balance: Money = ZERO

    has_alerts: bool = False
    alerts: Optional[list[dict[str, Any]]] = None

    is_payday: bool = False

    income_details: Optional[list[dict[str, Any]]] = None
    debt_details: Optional[list[dict[str, Any]]] = None
    expense_details: Optional[dict[str, Any]] = None

    calculated_at: dt.datetime = Field(default_factory=utcnow)

    @property
    def net_flow(self) -> Decimal:
        """The day's contribution to the running balance."""
        return (
            self.expected_income
            - self.expected_expenses
            - self.expected_debt_payments
            - self.predicted_spend
        )
