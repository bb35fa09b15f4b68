"""Ledger services: every balance-changing operation lives here."""

from fintrack.ledger.accounts import AccountLedger
from fintrack.ledger.base import LedgerService, OperationContext
from fintrack.ledger.budgets import BudgetPlanner
from fintrack.ledger.debts import DebtLedger
from fintrack.ledger.mutator import BalanceMutator, transaction_delta
from fintrack.ledger.recurring import RecurringLedger
from fintrack.ledger.savings import SavingsLedger
from fintrack.ledger.transactions import TransactionLedger

__all__ = [
    "AccountLedger",
    "BalanceMutator",
    "BudgetPlanner",
    "DebtLedger",
    "LedgerService",
    "OperationContext",
    "RecurringLedger",
    "SavingsLedger",
    "TransactionLedger",
    "transaction_delta",
]
