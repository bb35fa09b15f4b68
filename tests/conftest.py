"""
Shared fixtures.

Every test gets a fresh in-memory store and drives it through the
FinanceTracker facade inside a single ``asyncio.run`` call.
"""

from datetime import date
from uuid import uuid4

import pytest

from fintrack.audit import AuditLogger
from fintrack.orchestrator import FinanceTracker
from fintrack.services.storage import InMemoryAuditStorage, InMemoryStorage


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def finance(storage, audit_storage):
    return FinanceTracker(storage, audit_logger=AuditLogger(audit_storage))


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def open_account(finance, user_id):
    """Async factory: open an account for the test user."""

    async def _open(balance="10000.00", account_type="cheque", name="Main", **extra):
        return await finance.create_account(user_id, {
            "name": name,
            "account_type": account_type,
            "opening_balance": balance,
            **extra,
        })

    return _open


@pytest.fixture
def post(finance, user_id):
    """Async factory: post a debit or credit against an account."""

    async def _post(account_id, amount, transaction_type="debit", when=date(2025, 1, 15), **extra):
        return await finance.create_transaction(user_id, {
            "account_id": account_id,
            "amount": amount,
            "transaction_type": transaction_type,
            "transaction_date": when,
            "description": extra.pop("description", "Groceries"),
            **extra,
        })

    return _post
