"""
Data Models Package

This package contains all Pydantic models used by FinTrack.
All data flowing through the ledger and the projection conforms to these schemas.
"""

from fintrack.models.ledger import (
    ACCOUNT_TYPE_CLASSIFICATION_DEFAULTS,
    ALWAYS_NON_SPENDING_TYPES,
    Account,
    AccountClassification,
    AccountType,
    AggregateKind,
    AggregateRef,
    Budget,
    BudgetIncome,
    BudgetItem,
    BudgetStatus,
    Category,
    Debt,
    DebtPayment,
    Money,
    PlannedOneOff,
    RecurringAmountType,
    RecurringFrequency,
    RecurringTransaction,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionSource,
    TransactionType,
    TransferResult,
)
from fintrack.models.tracker import DailyTrackerEntry, TrackerAlert
from fintrack.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ACCOUNT_TYPE_CLASSIFICATION_DEFAULTS",
    "ALWAYS_NON_SPENDING_TYPES",
    "Account",
    "AccountClassification",
    "AccountType",
    "AggregateKind",
    "AggregateRef",
    "Budget",
    "BudgetIncome",
    "BudgetItem",
    "BudgetStatus",
    "Category",
    "Debt",
    "DebtPayment",
    "Money",
    "PlannedOneOff",
    "RecurringAmountType",
    "RecurringFrequency",
    "RecurringTransaction",
    "SavingsContribution",
    "SavingsGoal",
    "Transaction",
    "TransactionSource",
    "TransactionType",
    "TransferResult",
    # Tracker models
    "DailyTrackerEntry",
    "TrackerAlert",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
