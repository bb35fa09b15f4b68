"""
Tests for FinTrack models

Test strategy:
1. Unit tests for individual components (models, money, schedule, validators)
2. Integration tests for ledger and projection flows (in-memory storage)
3. No external services in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from fintrack.models.ledger import (
    Account,
    AccountClassification,
    AccountType,
    AggregateKind,
    AggregateRef,
    RecurringTransaction,
    Transaction,
)
from fintrack.models.tracker import DailyTrackerEntry, TrackerAlert
from fintrack.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_account_classification_defaults(self):
        """Test that classification follows the account type."""
        cheque = Account(user_id=uuid4(), name="Cheque", account_type=AccountType.CHEQUE)
        savings = Account(user_id=uuid4(), name="Savings", account_type=AccountType.SAVINGS)
        assert cheque.classification == AccountClassification.SPENDING
        assert cheque.is_spending
        assert savings.classification == AccountClassification.NON_SPENDING
        assert not savings.is_spending

    def test_investment_is_never_spending(self):
        """Test that an explicit classification can't make investments spendable."""
        account = Account(
            user_id=uuid4(),
            name="Shares",
            account_type=AccountType.INVESTMENT,
            classification=AccountClassification.SPENDING,
        )
        assert account.classification == AccountClassification.NON_SPENDING

    def test_account_name_strips_whitespace(self):
        account = Account(user_id=uuid4(), name="  Main  ", account_type="cheque")
        assert account.name == "Main"

    def test_money_fields_hold_exactly_two_decimals(self):
        """Test that amounts are stored with exactly two decimals."""
        account = Account(
            user_id=uuid4(), name="Main", account_type="cheque", current_balance="10.5",
        )
        assert account.current_balance == Decimal("10.50")
        assert str(account.current_balance) == "10.50"

    def test_sub_cent_amount_is_rejected(self):
        """Test that amounts finer than a cent are refused, not rounded."""
        with pytest.raises(ValueError):
            Account(
                user_id=uuid4(), name="Main", account_type="cheque", current_balance="10.005",
            )

    def test_transaction_rejects_float_amount(self):
        """Test that binary floats are refused."""
        with pytest.raises(ValueError):
            Transaction(
                user_id=uuid4(),
                account_id=uuid4(),
                amount=12.5,
                transaction_type="debit",
                transaction_date=date(2025, 1, 1),
                description="Float",
            )

    def test_transaction_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            Transaction(
                user_id=uuid4(),
                account_id=uuid4(),
                amount="-5.00",
                transaction_type="debit",
                transaction_date=date(2025, 1, 1),
                description="Negative",
            )

    def test_variable_template_requires_confirmation(self):
        template = RecurringTransaction(
            user_id=uuid4(),
            account_id=uuid4(),
            name="Electricity",
            amount_type="variable",
            amount_max="900.00",
            frequency="monthly",
            day_of_month=3,
            start_date=date(2025, 1, 1),
            transaction_type="debit",
        )
        assert template.requires_confirmation is True
        assert template.expected_amount == Decimal("900.00")

    def test_fixed_template_expected_amount(self):
        template = RecurringTransaction(
            user_id=uuid4(),
            account_id=uuid4(),
            name="Rent",
            amount="7500.00",
            frequency="monthly",
            start_date=date(2025, 1, 1),
            transaction_type="debit",
        )
        assert template.requires_confirmation is False
        assert template.expected_amount == Decimal("7500.00")

    def test_aggregate_ref_is_hashable(self):
        ref = AggregateRef(kind=AggregateKind.DEBT, id=uuid4(), user_id=uuid4())
        assert {ref: 1}[ref] == 1
        assert str(ref).startswith("debt:")


class TestTrackerModels:
    """Tests for projection entry models."""

    def test_alert_payload(self):
        alert = TrackerAlert(message="Below zero", running_balance="-12.50")
        assert alert.to_payload() == {
            "type": "negative_balance",
            "severity": "warning",
            "message": "Below zero",
            "running_balance": "-12.50",
        }

    def test_net_flow(self):
        entry = DailyTrackerEntry(
            user_id=uuid4(),
            date=date(2025, 2, 25),
            expected_income="30000.00",
            expected_expenses="1000.00",
            expected_debt_payments="1200.00",
            predicted_spend="10.00",
        )
        assert entry.net_flow == Decimal("27790.00")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.ACCOUNT_OPENED,
            description="Account opened",
        )
        assert event.event_type == AuditEventType.ACCOUNT_OPENED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Transaction created",
            details={"amount": Decimal("1000.00"), "account_id": uuid4()},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "transaction_created"
        assert log_dict["details"]["amount"] == "1000.00"
        assert isinstance(log_dict["details"]["account_id"], str)

    def test_audit_event_to_record(self):
        """Test conversion to a storage row."""
        event = AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            description="Operation failed: create_transfer",
            error_message="Cannot transfer to the same account",
        )
        row = event.to_record()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "operation_failed"  # event_type
        assert row[10] == "Cannot transfer to the same account"

    def test_audit_event_builder_balance_applied(self):
        """Test AuditEventBuilder.balance_applied."""
        correlation_id = uuid4()
        ref = AggregateRef(kind=AggregateKind.ACCOUNT, id=uuid4(), user_id=uuid4())

        event = AuditEventBuilder.balance_applied(
            ref=ref,
            delta=Decimal("-250.00"),
            new_value=Decimal("750.00"),
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.BALANCE_APPLIED
        assert event.entity_id == ref.id
        assert event.user_id == ref.user_id
        assert event.correlation_id == correlation_id
        assert event.description == "Applied -250.00 to account"

    def test_audit_event_builder_negative_balance_is_warning(self):
        event = AuditEventBuilder.negative_balance_projected(
            user_id=uuid4(),
            first_date=date(2025, 2, 2),
            lowest_balance=Decimal("-1500.00"),
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.to_log_dict()["details"]["lowest_balance"] == "-1500.00"
