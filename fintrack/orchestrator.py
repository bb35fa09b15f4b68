"""
Main Orchestrator for FinTrack

This module wires the ledger services and the projection engine onto one
storage backend and exposes them through a single facade.

DESIGN DECISION: The facade enforces the boundaries:
- Only ledger services hold the balance mutator
- The projection engine reads ledger state but never writes it
- Every operation is audited through one shared AuditLogger
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog

from fintrack.audit import AuditLogger, configure_logging
from fintrack.config import get_settings
from fintrack.ledger import (
    AccountLedger,
    BalanceMutator,
    BudgetPlanner,
    DebtLedger,
    RecurringLedger,
    SavingsLedger,
    TransactionLedger,
)
from fintrack.models.ledger import (
    Account,
    Budget,
    Category,
    Debt,
    DebtPayment,
    RecurringTransaction,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransferResult,
)
from fintrack.models.tracker import DailyTrackerEntry
from fintrack.projection import DailyTracker
from fintrack.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryStorage,
)
from fintrack.validation import InputValidator

logger = structlog.get_logger(__name__)


class FinanceTracker:
    """
    Entry point for every ledger and projection operation.

    Each method takes the acting ``user_id`` first; records belonging to
    another user are reported as not found.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
    ):
        settings = get_settings()
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or InputValidator()

        mutator = BalanceMutator(storage, self._audit_logger, settings.ledger)
        shared = dict(
            mutator=mutator,
            validator=self._validator,
            audit_logger=self._audit_logger,
        )
        self.accounts = AccountLedger(storage, **shared)
        self.transactions = TransactionLedger(storage, **shared)
        self.recurring = RecurringLedger(storage, self.transactions, **shared)
        self.debts = DebtLedger(storage, **shared)
        self.savings = SavingsLedger(storage, **shared)
        self.budgets = BudgetPlanner(storage, **shared)
        self.tracker = DailyTracker(
            storage,
            audit_logger=self._audit_logger,
            validator=self._validator,
            settings=settings.tracker,
        )

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    # =========================================================================
    # ACCOUNTS AND REFERENCE DATA
    # =========================================================================

    async def create_account(self, user_id: UUID, data: Any) -> Account:
        return await self.accounts.create_account(user_id, data)

    async def get_account(self, user_id: UUID, account_id: UUID) -> Account:
        return await self.accounts.get_account(user_id, account_id)

    async def create_category(self, user_id: UUID, name: str, category_type: str = "expense") -> Category:
        return await self.accounts.create_category(user_id, name, category_type)

    async def open_debt(self, debt: Debt) -> Debt:
        return await self.debts.open_debt(debt)

    async def open_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        return await self.savings.open_savings_goal(goal)

    async def register_recurring(self, template: RecurringTransaction) -> RecurringTransaction:
        return await self.recurring.register_template(template)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(self, user_id: UUID, data: Any) -> Transaction:
        return await self.transactions.create_transaction(user_id, data)

    async def create_transfer(self, user_id: UUID, data: Any) -> TransferResult:
        return await self.transactions.create_transfer(user_id, data)

    async def update_transaction(self, user_id: UUID, transaction_id: UUID, data: Any) -> Transaction:
        return await self.transactions.update_transaction(user_id, transaction_id, data)

    async def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> int:
        return await self.transactions.delete_transaction(user_id, transaction_id)

    async def bulk_categorize(self, user_id: UUID, data: Any) -> int:
        return await self.transactions.bulk_categorize(user_id, data)

    # =========================================================================
    # RECURRING
    # =========================================================================

    async def generate_recurring_instance(
        self,
        user_id: UUID,
        recurring_id: UUID,
        data: Any = None,
    ) -> Transaction:
        return await self.recurring.generate_recurring_instance(user_id, recurring_id, data)

    async def skip_recurring(self, user_id: UUID, recurring_id: UUID) -> RecurringTransaction:
        return await self.recurring.skip_recurring(user_id, recurring_id)

    async def get_due_recurring(
        self,
        user_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[RecurringTransaction]:
        return await self.recurring.get_due_recurring(user_id, as_of)

    async def auto_generate_recurring(
        self,
        user_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[Transaction]:
        return await self.recurring.auto_generate_recurring(user_id, as_of)

    # =========================================================================
    # DEBTS AND SAVINGS
    # =========================================================================

    async def add_debt_payment(self, user_id: UUID, debt_id: UUID, data: Any) -> DebtPayment:
        return await self.debts.add_debt_payment(user_id, debt_id, data)

    async def update_debt_payment(
        self,
        user_id: UUID,
        debt_id: UUID,
        payment_id: UUID,
        data: Any,
    ) -> DebtPayment:
        return await self.debts.update_debt_payment(user_id, debt_id, payment_id, data)

    async def remove_debt_payment(self, user_id: UUID, debt_id: UUID, payment_id: UUID) -> bool:
        return await self.debts.remove_debt_payment(user_id, debt_id, payment_id)

    async def add_contribution(self, user_id: UUID, goal_id: UUID, data: Any) -> SavingsContribution:
        return await self.savings.add_contribution(user_id, goal_id, data)

    async def update_contribution(
        self,
        user_id: UUID,
        goal_id: UUID,
        contribution_id: UUID,
        data: Any,
    ) -> SavingsContribution:
        return await self.savings.update_contribution(user_id, goal_id, contribution_id, data)

    async def remove_contribution(self, user_id: UUID, goal_id: UUID, contribution_id: UUID) -> bool:
        return await self.savings.remove_contribution(user_id, goal_id, contribution_id)

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(self, user_id: UUID, data: Any) -> Budget:
        return await self.budgets.create_budget(user_id, data)

    async def add_budget_item(self, user_id: UUID, budget_id: UUID, data: Any) -> Budget:
        return await self.budgets.add_budget_item(user_id, budget_id, data)

    async def update_budget_item(self, user_id: UUID, budget_id: UUID, item_id: UUID, data: Any) -> Budget:
        return await self.budgets.update_budget_item(user_id, budget_id, item_id, data)

    async def remove_budget_item(self, user_id: UUID, budget_id: UUID, item_id: UUID) -> Budget:
        return await self.budgets.remove_budget_item(user_id, budget_id, item_id)

    async def add_budget_income(self, user_id: UUID, budget_id: UUID, data: Any) -> Budget:
        return await self.budgets.add_budget_income(user_id, budget_id, data)

    async def update_budget_income(self, user_id: UUID, budget_id: UUID, income_id: UUID, data: Any) -> Budget:
        return await self.budgets.update_budget_income(user_id, budget_id, income_id, data)

    async def remove_budget_income(self, user_id: UUID, budget_id: UUID, income_id: UUID) -> Budget:
        return await self.budgets.remove_budget_income(user_id, budget_id, income_id)

    async def add_planned_one_off(self, user_id: UUID, budget_id: UUID, data: Any) -> Budget:
        return await self.budgets.add_planned_one_off(user_id, budget_id, data)

    async def update_planned_one_off(self, user_id: UUID, budget_id: UUID, one_off_id: UUID, data: Any) -> Budget:
        return await self.budgets.update_planned_one_off(user_id, budget_id, one_off_id, data)

    async def remove_planned_one_off(self, user_id: UUID, budget_id: UUID, one_off_id: UUID) -> Budget:
        return await self.budgets.remove_planned_one_off(user_id, budget_id, one_off_id)

    async def set_budget_status(self, user_id: UUID, budget_id: UUID, data: Any) -> Budget:
        return await self.budgets.set_budget_status(user_id, budget_id, data)

    # =========================================================================
    # PROJECTION
    # =========================================================================

    async def generate_tracker(self, user_id: UUID, start_date: Any, end_date: Any) -> list[DailyTrackerEntry]:
        return await self.tracker.generate_range(user_id, start_date, end_date)

    async def get_tracker_range(self, user_id: UUID, start_date: Any, end_date: Any) -> list[DailyTrackerEntry]:
        return await self.tracker.get_range(user_id, start_date, end_date)

    async def get_tracker_entry(self, user_id: UUID, entry_date: Any) -> Optional[DailyTrackerEntry]:
        return await self.tracker.get_by_date(user_id, entry_date)

    async def clear_tracker_range(self, user_id: UUID, start_date: Any, end_date: Any) -> int:
        return await self.tracker.clear_range(user_id, start_date, end_date)

    async def get_tracker_entry_by_id(self, user_id: UUID, entry_id: UUID) -> DailyTrackerEntry:
        return await self.tracker.get_entry_by_id(user_id, entry_id)

    async def create_tracker_entry(self, user_id: UUID, data: Any) -> DailyTrackerEntry:
        return await self.tracker.create_entry(user_id, data)

    async def update_tracker_entry(self, user_id: UUID, entry_id: UUID, data: Any) -> DailyTrackerEntry:
        return await self.tracker.update_entry(user_id, entry_id, data)

    async def delete_tracker_entry(self, user_id: UUID, entry_id: UUID) -> None:
        await self.tracker.delete_entry(user_id, entry_id)


def create_app_components(
    storage: Optional[InMemoryStorage] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    persist_audit: bool = True,
) -> FinanceTracker:
    """
    Factory function to create all application components.

    Args:
        storage: Ledger and tracker backend. A fresh in-memory store if omitted.
        audit_storage: Where audit events are appended.
        persist_audit: Whether to keep audit events beyond the log stream.
                       Set to False for local-only logging.

    Returns:
        A wired FinanceTracker
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    if persist_audit:
        audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage())
    else:
        audit_logger = AuditLogger()  # Local-only logging

    logger.info(
        "components_created",
        environment=settings.app.app_environment,
        persist_audit=persist_audit,
    )
    return FinanceTracker(storage or InMemoryStorage(), audit_logger=audit_logger)
