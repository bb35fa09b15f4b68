"""
In-Memory Storage Implementation

DESIGN DECISION: The in-process store is the reference backend:
1. Tests run against real storage semantics instead of mocks
2. No database setup required for local use
3. It shows exactly what a persistent backend has to guarantee

TRADEOFFS:
- Nothing survives the process
- Units of work are serialized with one lock (fine for personal use)

Rollback works by snapshotting every table when the outermost unit of
work opens and restoring the snapshot if the block raises. Rows are
copied on the way in and on the way out so callers never hold a
reference into the store.
"""

import asyncio
import contextvars
import copy
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from fintrack.models.audit import AuditEvent
from fintrack.models.ledger import (
    Account,
    AggregateKind,
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
    utcnow,
)
from fintrack.models.tracker import DailyTrackerEntry
from fintrack.services.storage.interface import (
    AuditStorageInterface,
    ConcurrencyConflictError,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
    TrackerStorageInterface,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

TABLES = (
    "accounts",
    "categories",
    "transactions",
    "debts",
    "debt_payments",
    "savings_goals",
    "contributions",
    "recurring",
    "budgets",
    "budget_items",
    "budget_incomes",
    "planned_one_offs",
    "tracker_entries",
)

# Aggregate kind -> (table, value field)
AGGREGATE_FIELDS = {
    AggregateKind.ACCOUNT: ("accounts", "current_balance"),
    AggregateKind.DEBT: ("debts", "current_balance"),
    AggregateKind.SAVINGS_GOAL: ("savings_goals", "current_amount"),
}


def _copy(model: ModelT) -> ModelT:
    return model.model_copy(deep=True)


class InMemoryStorage(LedgerStorageInterface, TrackerStorageInterface):
    """
    Ledger and tracker storage held in dictionaries keyed by record id.

    One instance serves both interfaces so a unit of work can span the
    ledger tables and the forecast table alike.
    """

    def __init__(self):
        self._tables: dict[str, dict[UUID, BaseModel]] = {name: {} for name in TABLES}
        self._lock = asyncio.Lock()
        self._in_unit: contextvars.ContextVar[bool] = contextvars.ContextVar(
            f"fintrack_uow_{id(self)}", default=False
        )

    # -------------------------------------------------------------------------
    # Atomicity
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["InMemoryStorage"]:
        if self._in_unit.get():
            yield self
            return

        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            token = self._in_unit.set(True)
            try:
                yield self
            except BaseException:
                self._tables = snapshot
                raise
            finally:
                self._in_unit.reset(token)

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    def _insert(self, table: str, model: ModelT) -> ModelT:
        rows = self._tables[table]
        if model.id in rows:
            raise DuplicateError(f"{table} row already exists: {model.id}")
        rows[model.id] = _copy(model)
        return _copy(model)

    def _replace(self, table: str, model: ModelT) -> ModelT:
        rows = self._tables[table]
        if model.id not in rows:
            raise StorageError(f"{table} row not found: {model.id}")
        if hasattr(model, "updated_at"):
            model = model.model_copy(update={"updated_at": utcnow()})
        rows[model.id] = _copy(model)
        return _copy(model)

    def _owned(self, table: str, record_id: UUID, user_id: UUID) -> Optional[BaseModel]:
        row = self._tables[table].get(record_id)
        if row is None or row.user_id != user_id:
            return None
        return _copy(row)

    def _children(self, table: str, parent_field: str, parent_id: UUID) -> list:
        return [
            _copy(row)
            for row in self._tables[table].values()
            if getattr(row, parent_field) == parent_id
        ]

    def _budget_line(self, table: str, record_id: UUID, budget_id: UUID) -> Optional[BaseModel]:
        row = self._tables[table].get(record_id)
        if row is None or row.budget_id != budget_id:
            return None
        return _copy(row)

    def _delete_budget_line(self, table: str, record_id: UUID, budget_id: UUID) -> bool:
        if self._budget_line(table, record_id, budget_id) is None:
            return False
        del self._tables[table][record_id]
        return True

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    async def get_aggregate_value(
        self,
        ref: AggregateRef,
    ) -> Optional[tuple[Decimal, int]]:
        table, field = AGGREGATE_FIELDS[ref.kind]
        row = self._tables[table].get(ref.id)
        if row is None or row.user_id != ref.user_id:
            return None
        return getattr(row, field), row.version

    async def compare_and_set_aggregate(
        self,
        ref: AggregateRef,
        expected_version: int,
        new_value: Decimal,
    ) -> int:
        table, field = AGGREGATE_FIELDS[ref.kind]
        row = self._tables[table].get(ref.id)
        if row is None or row.user_id != ref.user_id:
            raise StorageError(f"Aggregate not found: {ref}")
        if row.version != expected_version:
            raise ConcurrencyConflictError(ref, expected_version, row.version)

        new_version = row.version + 1
        self._tables[table][ref.id] = row.model_copy(
            update={field: new_value, "version": new_version, "updated_at": utcnow()}
        )
        return new_version

    # -------------------------------------------------------------------------
    # Accounts and categories
    # -------------------------------------------------------------------------

    async def save_account(self, account: Account) -> Account:
        return self._insert("accounts", account)

    async def get_account(self, account_id: UUID, user_id: UUID) -> Optional[Account]:
        return self._owned("accounts", account_id, user_id)

    async def list_accounts(self, user_id: UUID) -> list[Account]:
        return [
            _copy(row) for row in self._tables["accounts"].values()
            if row.user_id == user_id
        ]

    async def save_category(self, category: Category) -> Category:
        return self._insert("categories", category)

    async def get_category(self, category_id: UUID, user_id: UUID) -> Optional[Category]:
        return self._owned("categories", category_id, user_id)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        return self._insert("transactions", transaction)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        return self._replace("transactions", transaction)

    async def get_transaction(
        self,
        transaction_id: UUID,
        user_id: UUID,
    ) -> Optional[Transaction]:
        return self._owned("transactions", transaction_id, user_id)

    async def find_by_transfer_pair(
        self,
        transfer_pair_id: UUID,
        user_id: UUID,
    ) -> list[Transaction]:
        return [
            _copy(row) for row in self._tables["transactions"].values()
            if row.transfer_pair_id == transfer_pair_id and row.user_id == user_id
        ]

    async def delete_transaction(self, transaction_id: UUID, user_id: UUID) -> bool:
        if self._owned("transactions", transaction_id, user_id) is None:
            return False
        del self._tables["transactions"][transaction_id]
        return True

    async def delete_by_transfer_pair(self, transfer_pair_id: UUID, user_id: UUID) -> int:
        legs = await self.find_by_transfer_pair(transfer_pair_id, user_id)
        for leg in legs:
            del self._tables["transactions"][leg.id]
        return len(legs)

    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        results = []
        for row in self._tables["transactions"].values():
            if row.user_id != user_id:
                continue
            if transaction_type and row.transaction_type != transaction_type:
                continue
            if account_id and row.account_id != account_id:
                continue
            if date_from and row.transaction_date < date_from:
                continue
            if date_to and row.transaction_date > date_to:
                continue
            results.append(_copy(row))

        results.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)
        return results

    async def bulk_update_category(
        self,
        transaction_ids: list[UUID],
        user_id: UUID,
        category_id: UUID,
    ) -> int:
        updated = 0
        rows = self._tables["transactions"]
        for transaction_id in set(transaction_ids):
            row = rows.get(transaction_id)
            if row is None or row.user_id != user_id:
                continue
            rows[transaction_id] = row.model_copy(
                update={"category_id": category_id, "is_reviewed": True, "updated_at": utcnow()}
            )
            updated += 1
        return updated

    # -------------------------------------------------------------------------
    # Debts
    # -------------------------------------------------------------------------

    async def save_debt(self, debt: Debt) -> Debt:
        return self._insert("debts", debt)

    async def get_debt(self, debt_id: UUID, user_id: UUID) -> Optional[Debt]:
        return self._owned("debts", debt_id, user_id)

    async def save_debt_payment(self, payment: DebtPayment) -> DebtPayment:
        return self._insert("debt_payments", payment)

    async def update_debt_payment(self, payment: DebtPayment) -> DebtPayment:
        return self._replace("debt_payments", payment)

    async def get_debt_payment(self, payment_id: UUID, debt_id: UUID) -> Optional[DebtPayment]:
        row = self._tables["debt_payments"].get(payment_id)
        if row is None or row.debt_id != debt_id:
            return None
        return _copy(row)

    async def delete_debt_payment(self, payment_id: UUID, debt_id: UUID) -> bool:
        if await self.get_debt_payment(payment_id, debt_id) is None:
            return False
        del self._tables["debt_payments"][payment_id]
        return True

    async def list_debt_payments(self, debt_id: UUID) -> list[DebtPayment]:
        payments = self._children("debt_payments", "debt_id", debt_id)
        return sorted(payments, key=lambda p: (p.payment_date, p.created_at))

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    async def save_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        return self._insert("savings_goals", goal)

    async def get_savings_goal(self, goal_id: UUID, user_id: UUID) -> Optional[SavingsGoal]:
        return self._owned("savings_goals", goal_id, user_id)

    async def mark_goal_completed(
        self,
        goal_id: UUID,
        user_id: UUID,
        completed_at: datetime,
    ) -> None:
        row = self._tables["savings_goals"].get(goal_id)
        if row is None or row.user_id != user_id:
            raise StorageError(f"savings_goals row not found: {goal_id}")
        self._tables["savings_goals"][goal_id] = row.model_copy(
            update={"is_completed": True, "completed_at": completed_at, "updated_at": utcnow()}
        )

    async def save_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        return self._insert("contributions", contribution)

    async def update_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        return self._replace("contributions", contribution)

    async def get_contribution(
        self,
        contribution_id: UUID,
        goal_id: UUID,
    ) -> Optional[SavingsContribution]:
        row = self._tables["contributions"].get(contribution_id)
        if row is None or row.savings_goal_id != goal_id:
            return None
        return _copy(row)

    async def delete_contribution(self, contribution_id: UUID, goal_id: UUID) -> bool:
        if await self.get_contribution(contribution_id, goal_id) is None:
            return False
        del self._tables["contributions"][contribution_id]
        return True

    async def list_contributions(self, goal_id: UUID) -> list[SavingsContribution]:
        contributions = self._children("contributions", "savings_goal_id", goal_id)
        return sorted(contributions, key=lambda c: (c.contribution_date, c.created_at))

    # -------------------------------------------------------------------------
    # Recurring templates
    # -------------------------------------------------------------------------

    async def save_recurring(self, recurring: RecurringTransaction) -> RecurringTransaction:
        return self._insert("recurring", recurring)

    async def update_recurring(self, recurring: RecurringTransaction) -> RecurringTransaction:
        return self._replace("recurring", recurring)

    async def get_recurring(
        self,
        recurring_id: UUID,
        user_id: UUID,
    ) -> Optional[RecurringTransaction]:
        return self._owned("recurring", recurring_id, user_id)

    async def list_recurring(
        self,
        user_id: UUID,
        active_only: bool = True,
    ) -> list[RecurringTransaction]:
        return [
            _copy(row) for row in self._tables["recurring"].values()
            if row.user_id == user_id and (row.is_active or not active_only)
        ]

    async def find_due_recurring(self, user_id: UUID, as_of: date) -> list[RecurringTransaction]:
        due = [
            row for row in await self.list_recurring(user_id)
            if row.next_occurrence is not None and row.next_occurrence <= as_of
        ]
        return sorted(due, key=lambda r: r.next_occurrence)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def save_budget(self, budget: Budget) -> Budget:
        if await self.find_budget_by_month(budget.user_id, budget.year, budget.month):
            raise DuplicateError(f"Budget already exists for {budget.year}-{budget.month:02d}")
        return self._insert("budgets", budget)

    async def update_budget(self, budget: Budget) -> Budget:
        return self._replace("budgets", budget)

    async def get_budget(self, budget_id: UUID, user_id: UUID) -> Optional[Budget]:
        return self._owned("budgets", budget_id, user_id)

    async def find_budget_by_month(
        self,
        user_id: UUID,
        year: int,
        month: int,
    ) -> Optional[Budget]:
        for row in self._tables["budgets"].values():
            if row.user_id == user_id and row.year == year and row.month == month:
                return _copy(row)
        return None

    async def list_budgets(self, user_id: UUID) -> list[Budget]:
        budgets = [
            _copy(row) for row in self._tables["budgets"].values()
            if row.user_id == user_id
        ]
        return sorted(budgets, key=lambda b: (b.year, b.month), reverse=True)

    async def save_budget_item(self, item: BudgetItem) -> BudgetItem:
        return self._insert("budget_items", item)

    async def update_budget_item(self, item: BudgetItem) -> BudgetItem:
        return self._replace("budget_items", item)

    async def get_budget_item(self, item_id: UUID, budget_id: UUID) -> Optional[BudgetItem]:
        return self._budget_line("budget_items", item_id, budget_id)

    async def delete_budget_item(self, item_id: UUID, budget_id: UUID) -> bool:
        return self._delete_budget_line("budget_items", item_id, budget_id)

    async def list_budget_items(self, budget_id: UUID) -> list[BudgetItem]:
        return self._children("budget_items", "budget_id", budget_id)

    async def save_budget_income(self, income: BudgetIncome) -> BudgetIncome:
        return self._insert("budget_incomes", income)

    async def update_budget_income(self, income: BudgetIncome) -> BudgetIncome:
        return self._replace("budget_incomes", income)

    async def get_budget_income(self, income_id: UUID, budget_id: UUID) -> Optional[BudgetIncome]:
        return self._budget_line("budget_incomes", income_id, budget_id)

    async def delete_budget_income(self, income_id: UUID, budget_id: UUID) -> bool:
        return self._delete_budget_line("budget_incomes", income_id, budget_id)

    async def list_budget_incomes(self, budget_id: UUID) -> list[BudgetIncome]:
        return self._children("budget_incomes", "budget_id", budget_id)

    async def save_planned_one_off(self, one_off: PlannedOneOff) -> PlannedOneOff:
        return self._insert("planned_one_offs", one_off)

    async def update_planned_one_off(self, one_off: PlannedOneOff) -> PlannedOneOff:
        return self._replace("planned_one_offs", one_off)

    async def get_planned_one_off(
        self,
        one_off_id: UUID,
        budget_id: UUID,
    ) -> Optional[PlannedOneOff]:
        return self._budget_line("planned_one_offs", one_off_id, budget_id)

    async def delete_planned_one_off(self, one_off_id: UUID, budget_id: UUID) -> bool:
        return self._delete_budget_line("planned_one_offs", one_off_id, budget_id)

    async def list_planned_one_offs(self, budget_id: UUID) -> list[PlannedOneOff]:
        return self._children("planned_one_offs", "budget_id", budget_id)

    # -------------------------------------------------------------------------
    # Daily tracker
    # -------------------------------------------------------------------------

    async def save_entries(self, entries: list[DailyTrackerEntry]) -> int:
        for entry in entries:
            if await self.get_entry(entry.user_id, entry.date) is not None:
                raise DuplicateError(f"Tracker entry already exists for {entry.date}")
            self._insert("tracker_entries", entry)
        return len(entries)

    async def list_entries(
        self,
        user_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[DailyTrackerEntry]:
        entries = [
            _copy(row) for row in self._tables["tracker_entries"].values()
            if row.user_id == user_id and start_date <= row.date <= end_date
        ]
        return sorted(entries, key=lambda e: e.date)

    async def get_entry(self, user_id: UUID, entry_date: date) -> Optional[DailyTrackerEntry]:
        for row in self._tables["tracker_entries"].values():
            if row.user_id == user_id and row.date == entry_date:
                return _copy(row)
        return None

    async def get_entry_by_id(self, entry_id: UUID, user_id: UUID) -> Optional[DailyTrackerEntry]:
        return self._owned("tracker_entries", entry_id, user_id)

    async def update_entry(self, entry: DailyTrackerEntry) -> DailyTrackerEntry:
        return self._replace("tracker_entries", entry)

    async def delete_entry(self, entry_id: UUID, user_id: UUID) -> bool:
        if self._owned("tracker_entries", entry_id, user_id) is None:
            return False
        del self._tables["tracker_entries"][entry_id]
        return True

    async def delete_entries(self, user_id: UUID, start_date: date, end_date: date) -> int:
        doomed = [
            row.id for row in self._tables["tracker_entries"].values()
            if row.user_id == user_id and start_date <= row.date <= end_date
        ]
        for entry_id in doomed:
            del self._tables["tracker_entries"][entry_id]
        return len(doomed)


class InMemoryAuditStorage(AuditStorageInterface):
    """
    Append-only audit log held in a list.

    Kept apart from ledger storage so audit events recorded during a
    failed unit of work are not rolled back with it.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(_copy(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
