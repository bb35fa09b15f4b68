"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

Two capabilities are required of any backend beyond plain CRUD:
- ``unit_of_work()``: every write made inside it commits or rolls back
  together, so an event record and its aggregate write cannot diverge.
- ``compare_and_set_aggregate()``: a versioned write of an aggregate's
  current value, so concurrent read-modify-write cycles are detected.

Lookups of user-owned records take the acting ``user_id`` and return None
when the record is missing or owned by someone else.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fintrack.models.audit import AuditEvent
from fintrack.models.ledger import (
    Account,
    AggregateRef,
    Budget,
    BudgetIncome,
    BudgetItem,
    Category,
    Debt,
    DebtPayment,
    PlannedOneOff,
    RecurringTransaction,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from fintrack.models.tracker import DailyTrackerEntry


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the ledger event store and its aggregates.

    Any storage implementation (PostgreSQL, SQLite, etc.) must implement
    these methods.
    """

    # -------------------------------------------------------------------------
    # Atomicity
    # -------------------------------------------------------------------------

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager:
        """
        Scope in which all writes commit together or not at all.

        Nested scopes join the outermost one.
        """
        pass

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_aggregate_value(
        self,
        ref: AggregateRef,
    ) -> Optional[tuple[Decimal, int]]:
        """
        Read an aggregate's current value and version.

        Returns:
            (value, version), or None if the aggregate doesn't exist
        """
        pass

    @abstractmethod
    async def compare_and_set_aggregate(
        self,
        ref: AggregateRef,
        expected_version: int,
        new_value: Decimal,
    ) -> int:
        """
        Write a new current value if the version still matches.

        Returns:
            The new version

        Raises:
            ConcurrencyConflictError: If the version moved since it was read
            StorageError: If the aggregate doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Accounts and categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID, user_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(self, user_id: UUID) -> list[Account]:
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID, user_id: UUID) -> Optional[Category]:
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace a stored transaction row.

        Raises:
            StorageError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def find_by_transfer_pair(
        self,
        transfer_pair_id: UUID,
        user_id: UUID,
    ) -> list[Transaction]:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID, user_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_by_transfer_pair(self, transfer_pair_id: UUID, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Args:
            user_id: Owner
            transaction_type: Only debits or only credits
            account_id: Only this account
            date_from: On or after this date
            date_to: On or before this date

        Returns:
            Matching transactions, newest first
        """
        pass

    @abstractmethod
    async def bulk_update_category(
        self,
        transaction_ids: list[UUID],
        user_id: UUID,
        category_id: UUID,
    ) -> int:
        """
        Set category and mark reviewed on every listed transaction the user owns.

        Returns:
            Number of rows updated
        """
        pass

    # -------------------------------------------------------------------------
    # Debts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_debt(self, debt: Debt) -> Debt:
        pass

    @abstractmethod
    async def get_debt(self, debt_id: UUID, user_id: UUID) -> Optional[Debt]:
        pass

    @abstractmethod
    async def save_debt_payment(self, payment: DebtPayment) -> DebtPayment:
        pass

    @abstractmethod
    async def update_debt_payment(self, payment: DebtPayment) -> DebtPayment:
        pass

    @abstractmethod
    async def get_debt_payment(self, payment_id: UUID, debt_id: UUID) -> Optional[DebtPayment]:
        pass

    @abstractmethod
    async def delete_debt_payment(self, payment_id: UUID, debt_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_debt_payments(self, debt_id: UUID) -> list[DebtPayment]:
        pass

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        pass

    @abstractmethod
    async def get_savings_goal(self, goal_id: UUID, user_id: UUID) -> Optional[SavingsGoal]:
        pass

    @abstractmethod
    async def mark_goal_completed(
        self,
        goal_id: UUID,
        user_id: UUID,
        completed_at: datetime,
    ) -> None:
        """Set the terminal completion flag. Never touches ``current_amount``."""
        pass

    @abstractmethod
    async def save_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        pass

    @abstractmethod
    async def update_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        pass

    @abstractmethod
    async def get_contribution(
        self,
        contribution_id: UUID,
        goal_id: UUID,
    ) -> Optional[SavingsContribution]:
        pass

    @abstractmethod
    async def delete_contribution(self, contribution_id: UUID, goal_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_contributions(self, goal_id: UUID) -> list[SavingsContribution]:
        pass

    # -------------------------------------------------------------------------
    # Recurring templates
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_recurring(self, recurring: RecurringTransaction) -> RecurringTransaction:
        pass

    @abstractmethod
    async def update_recurring(self, recurring: RecurringTransaction) -> RecurringTransaction:
        pass

    @abstractmethod
    async def get_recurring(
        self,
        recurring_id: UUID,
        user_id: UUID,
    ) -> Optional[RecurringTransaction]:
        pass

    @abstractmethod
    async def list_recurring(
        self,
        user_id: UUID,
        active_only: bool = True,
    ) -> list[RecurringTransaction]:
        pass

    @abstractmethod
    async def find_due_recurring(self, user_id: UUID, as_of: date) -> list[RecurringTransaction]:
        """Active templates whose ``next_occurrence`` is on or before ``as_of``."""
        pass

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID, user_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def find_budget_by_month(
        self,
        user_id: UUID,
        year: int,
        month: int,
    ) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: UUID) -> list[Budget]:
        pass

    @abstractmethod
    async def save_budget_item(self, item: BudgetItem) -> BudgetItem:
        pass

    @abstractmethod
    async def update_budget_item(self, item: BudgetItem) -> BudgetItem:
        pass

    @abstractmethod
    async def get_budget_item(self, item_id: UUID, budget_id: UUID) -> Optional[BudgetItem]:
        pass

    @abstractmethod
    async def delete_budget_item(self, item_id: UUID, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budget_items(self, budget_id: UUID) -> list[BudgetItem]:
        pass

    @abstractmethod
    async def save_budget_income(self, income: BudgetIncome) -> BudgetIncome:
        pass

    @abstractmethod
    async def update_budget_income(self, income: BudgetIncome) -> BudgetIncome:
        pass

    @abstractmethod
    async def get_budget_income(self, income_id: UUID, budget_id: UUID) -> Optional[BudgetIncome]:
        pass

    @abstractmethod
    async def delete_budget_income(self, income_id: UUID, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budget_incomes(self, budget_id: UUID) -> list[BudgetIncome]:
        pass

    @abstractmethod
    async def save_planned_one_off(self, one_off: PlannedOneOff) -> PlannedOneOff:
        pass

    @abstractmethod
    async def update_planned_one_off(self, one_off: PlannedOneOff) -> PlannedOneOff:
        pass

    @abstractmethod
    async def get_planned_one_off(
        self,
        one_off_id: UUID,
        budget_id: UUID,
    ) -> Optional[PlannedOneOff]:
        pass

    @abstractmethod
    async def delete_planned_one_off(self, one_off_id: UUID, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_planned_one_offs(self, budget_id: UUID) -> list[PlannedOneOff]:
        pass


class TrackerStorageInterface(ABC):
    """
    Abstract interface for the projection's forecast store.

    Entries are unique per user and date.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager:
        pass

    @abstractmethod
    async def save_entries(self, entries: list[DailyTrackerEntry]) -> int:
        """
        Insert forecast entries.

        Raises:
            DuplicateError: If an entry already exists for a user/date
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        user_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[DailyTrackerEntry]:
        """Entries in ``[start_date, end_date]``, in date order."""
        pass

    @abstractmethod
    async def get_entry(self, user_id: UUID, entry_date: date) -> Optional[DailyTrackerEntry]:
        pass

    @abstractmethod
    async def get_entry_by_id(self, entry_id: UUID, user_id: UUID) -> Optional[DailyTrackerEntry]:
        pass

    @abstractmethod
    async def update_entry(self, entry: DailyTrackerEntry) -> DailyTrackerEntry:
        """
        Replace a stored entry.

        Raises:
            StorageError: If the entry doesn't exist
        """
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: UUID, user_id: UUID) -> bool:
        pass

    @abstractmethod
    async def delete_entries(self, user_id: UUID, start_date: date, end_date: date) -> int:
        """
        Delete entries in ``[start_date, end_date]``.

        Returns:
            Number of entries deleted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Related events in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrencyConflictError(StorageError):
    """An aggregate's version moved between read and write."""

    def __init__(self, ref: AggregateRef, expected_version: int, actual_version: int):
        super().__init__(
            f"Version conflict on {ref}: expected {expected_version}, found {actual_version}"
        )
        self.ref = ref
        self.expected_version = expected_version
        self.actual_version = actual_version
