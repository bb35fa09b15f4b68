"""
Tests for the Balance-Consistency Ledger

Test strategy:
1. Every balance check compares exact Decimals, never approximations
2. Scenarios run end to end through the FinanceTracker facade
3. Failure paths assert that nothing was mutated
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from fintrack.config import LedgerSettings
from fintrack.errors import ConflictError, NotFoundError, ValidationError
from fintrack.ledger import BalanceMutator, transaction_delta
from fintrack.ledger.mutator import account_ref
from fintrack.models.audit import AuditEventType
from fintrack.models.ledger import (
    Debt,
    RecurringTransaction,
    SavingsGoal,
    TransactionSource,
)
from fintrack.services.storage import ConcurrencyConflictError, StorageError


async def _budget_lines(storage, budget_id):
    return await asyncio.gather(
        storage.list_budget_items(budget_id),
        storage.list_budget_incomes(budget_id),
        storage.list_planned_one_offs(budget_id),
    )


class TestSignedDeltas:
    """Tests for the debit/credit sign convention."""

    def test_debit_is_negative(self):
        assert transaction_delta("debit", Decimal("250.00")) == Decimal("-250.00")

    def test_credit_is_positive(self):
        assert transaction_delta("credit", Decimal("250.00")) == Decimal("250.00")


class TestBalanceMutator:
    """Tests for the compare-and-set write path."""

    def test_apply_adds_delta(self, storage, open_account, user_id):
        """Test that a string delta is parsed and added exactly."""
        async def scenario():
            account = await open_account("100.10")
            mutator = BalanceMutator(storage)
            new_value = await mutator.apply(account_ref(user_id, account.id), "-0.20")
            return new_value, await storage.get_aggregate_value(account_ref(user_id, account.id))

        new_value, (stored, version) = asyncio.run(scenario())
        assert new_value == Decimal("99.90")
        assert stored == Decimal("99.90")
        assert version == 1

    def test_apply_twice_applies_twice(self, storage, open_account, user_id):
        """The mutator is not idempotent; callers own exactly-once."""
        async def scenario():
            account = await open_account("0.00")
            mutator = BalanceMutator(storage)
            ref = account_ref(user_id, account.id)
            await mutator.apply(ref, "5.00")
            return await mutator.apply(ref, "5.00")

        assert asyncio.run(scenario()) == Decimal("10.00")

    def test_missing_aggregate_raises_not_found(self, storage, user_id):
        mutator = BalanceMutator(storage)
        with pytest.raises(NotFoundError, match="Account not found"):
            asyncio.run(mutator.apply(account_ref(user_id, uuid4()), "1.00"))

    def test_conflict_is_retried(self, storage, open_account, user_id, monkeypatch):
        """Test that a lost write race is retried from a fresh read."""
        attempts = []
        original = storage.compare_and_set_aggregate

        async def flaky(ref, expected_version, new_value):
            attempts.append(expected_version)
            if len(attempts) == 1:
                raise ConcurrencyConflictError(ref, expected_version, expected_version + 1)
            return await original(ref, expected_version, new_value)

        async def scenario():
            account = await open_account("50.00")
            monkeypatch.setattr(storage, "compare_and_set_aggregate", flaky)
            mutator = BalanceMutator(storage, settings=LedgerSettings(conflict_retry_wait_seconds=0))
            return await mutator.apply(account_ref(user_id, account.id), "25.00")

        assert asyncio.run(scenario()) == Decimal("75.00")
        assert len(attempts) == 2

    def test_conflict_propagates_after_last_attempt(self, storage, open_account, user_id, monkeypatch):
        attempts = []

        async def always_conflict(ref, expected_version, new_value):
            attempts.append(expected_version)
            raise ConcurrencyConflictError(ref, expected_version, expected_version + 1)

        async def scenario():
            account = await open_account("50.00")
            monkeypatch.setattr(storage, "compare_and_set_aggregate", always_conflict)
            settings = LedgerSettings(conflict_retry_attempts=3, conflict_retry_wait_seconds=0)
            await BalanceMutator(storage, settings=settings).apply(
                account_ref(user_id, account.id), "25.00"
            )

        with pytest.raises(ConcurrencyConflictError):
            asyncio.run(scenario())
        assert len(attempts) == 3


class TestTransactions:
    """Tests for create, update and delete of plain transactions."""

    def test_balance_follows_transactions(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account("10000.00")
            await post(account.id, "250.50", "debit")
            await post(account.id, "1000.00", "credit")
            return await finance.get_account(user_id, account.id)

        account = asyncio.run(scenario())
        assert account.current_balance == Decimal("10749.50")

    def test_created_transaction_fields(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account()
            return await post(account.id, "99.99")

        transaction = asyncio.run(scenario())
        assert transaction.amount == Decimal("99.99")
        assert transaction.currency == "ZAR"
        assert transaction.source == TransactionSource.MANUAL
        assert transaction.is_reviewed is True
        assert transaction.transfer_pair_id is None

    def test_update_a_to_b_to_a_restores_balance(self, finance, user_id, open_account, post):
        """Test that reversing and reapplying never drifts."""
        async def scenario():
            account = await open_account("10000.00")
            transaction = await post(account.id, "100.00")
            await finance.update_transaction(user_id, transaction.id, {"amount": "175.25"})
            middle = await finance.get_account(user_id, account.id)
            await finance.update_transaction(user_id, transaction.id, {"amount": "100.00"})
            final = await finance.get_account(user_id, account.id)
            return middle.current_balance, final.current_balance

        middle, final = asyncio.run(scenario())
        assert middle == Decimal("9824.75")
        assert final == Decimal("9900.00")

    def test_update_with_same_amount_touches_no_balance(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account("500.00")
            transaction = await post(account.id, "100.00")
            before = await finance.get_account(user_id, account.id)
            await finance.update_transaction(
                user_id, transaction.id, {"amount": "100.00", "description": "Renamed"}
            )
            after = await finance.get_account(user_id, account.id)
            return before, after

        before, after = asyncio.run(scenario())
        assert after.current_balance == before.current_balance
        assert after.version == before.version

    def test_type_change_reapplies(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account("1000.00")
            transaction = await post(account.id, "100.00", "debit")
            await finance.update_transaction(user_id, transaction.id, {"transaction_type": "credit"})
            return await finance.get_account(user_id, account.id)

        assert asyncio.run(scenario()).current_balance == Decimal("1100.00")

    def test_delete_reverses(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account("1000.00")
            transaction = await post(account.id, "300.00")
            deleted = await finance.delete_transaction(user_id, transaction.id)
            return deleted, await finance.get_account(user_id, account.id)

        deleted, account = asyncio.run(scenario())
        assert deleted == 1
        assert account.current_balance == Decimal("1000.00")

    def test_balance_invariant_over_mixed_sequence(self, finance, user_id, open_account, post):
        """Balance equals opening balance plus the deltas of surviving rows."""
        async def scenario():
            account = await open_account("2500.00")
            first = await post(account.id, "120.00", "debit")
            second = await post(account.id, "80.40", "credit")
            third = await post(account.id, "33.33", "debit")
            await finance.update_transaction(user_id, first.id, {"amount": "60.00"})
            await finance.update_transaction(user_id, second.id, {"transaction_type": "debit"})
            await finance.delete_transaction(user_id, third.id)
            account = await finance.get_account(user_id, account.id)
            rows = await finance.transactions.list_transactions(user_id, account_id=account.id)
            return account, rows

        account, rows = asyncio.run(scenario())
        expected = Decimal("2500.00") + sum(
            transaction_delta(r.transaction_type, r.amount) for r in rows
        )
        assert account.current_balance == expected == Decimal("2359.60")

    def test_transfer_type_is_rejected(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account()
            await post(account.id, "10.00", "transfer")

        with pytest.raises(ValidationError, match="Use create_transfer"):
            asyncio.run(scenario())

    def test_float_amount_is_rejected(self, open_account, post):
        async def scenario():
            account = await open_account()
            await post(account.id, 10.5)

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(scenario())
        assert "amount" in exc_info.value.field_errors

    @pytest.mark.parametrize("amount", ["10.005", "1e3", "1E+3", "12.", ".50", "1,000.00"])
    def test_malformed_amount_is_rejected_without_mutation(self, finance, user_id, open_account, post, amount):
        async def scenario():
            account = await open_account("100.00")
            with pytest.raises(ValidationError) as exc_info:
                await post(account.id, amount, "credit")
            rows = await finance.transactions.list_transactions(user_id)
            return exc_info.value, rows, await finance.get_account(user_id, account.id)

        error, rows, account = asyncio.run(scenario())
        assert "amount" in error.field_errors
        assert rows == []
        assert account.current_balance == Decimal("100.00")
        assert account.version == 0

    def test_non_positive_amount_is_rejected(self, open_account, post):
        async def scenario():
            account = await open_account()
            await post(account.id, "0.00")

        with pytest.raises(ValidationError):
            asyncio.run(scenario())

    def test_unknown_account_is_not_found(self, post):
        with pytest.raises(NotFoundError, match="Account not found"):
            asyncio.run(post(uuid4(), "10.00"))

    def test_other_users_account_is_not_found(self, finance, open_account):
        async def scenario():
            account = await open_account()
            await finance.create_transaction(uuid4(), {
                "account_id": account.id,
                "amount": "10.00",
                "transaction_type": "debit",
                "transaction_date": "2025-01-15",
                "description": "Not mine",
            })

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_unknown_category_is_not_found(self, open_account, post):
        async def scenario():
            account = await open_account()
            await post(account.id, "10.00", category_id=uuid4())

        with pytest.raises(NotFoundError, match="Category not found"):
            asyncio.run(scenario())

    def test_empty_update_is_rejected(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account()
            transaction = await post(account.id, "10.00")
            await finance.update_transaction(user_id, transaction.id, {})

        with pytest.raises(ValidationError):
            asyncio.run(scenario())


class TestTransfers:
    """Tests for paired transfer legs."""

    def test_transfer_moves_money_between_accounts(self, finance, user_id, open_account):
        async def scenario():
            source = await open_account("5000.00", name="Cheque")
            destination = await open_account("100.00", account_type="savings", name="Savings")
            result = await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": "750.00",
                "transaction_date": "2025-03-01",
            })
            return (
                result,
                await finance.get_account(user_id, source.id),
                await finance.get_account(user_id, destination.id),
            )

        result, source, destination = asyncio.run(scenario())
        assert source.current_balance == Decimal("4250.00")
        assert destination.current_balance == Decimal("850.00")
        assert result.debit.transfer_pair_id == result.credit.transfer_pair_id
        assert result.debit.transfer_to_account_id == destination.id
        assert result.debit.transaction_type.value == "debit"
        assert result.credit.transaction_type.value == "credit"

    def test_deleting_one_leg_removes_both(self, finance, user_id, open_account):
        async def scenario():
            source = await open_account("5000.00", name="Cheque")
            destination = await open_account("0.00", name="Other")
            result = await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": "1000.00",
                "transaction_date": "2025-03-01",
            })
            deleted = await finance.delete_transaction(user_id, result.credit.id)
            remaining = await finance.transactions.list_transactions(user_id)
            return (
                deleted,
                remaining,
                await finance.get_account(user_id, source.id),
                await finance.get_account(user_id, destination.id),
            )

        deleted, remaining, source, destination = asyncio.run(scenario())
        assert deleted == 2
        assert remaining == []
        assert source.current_balance == Decimal("5000.00")
        assert destination.current_balance == Decimal("0.00")

    def test_amount_change_applies_to_both_legs(self, finance, user_id, open_account):
        async def scenario():
            source = await open_account("5000.00", name="Cheque")
            destination = await open_account("0.00", name="Other")
            result = await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": "1000.00",
                "transaction_date": "2025-03-01",
            })
            await finance.update_transaction(user_id, result.debit.id, {"amount": "400.00"})
            credit = await finance.transactions.get_transaction(user_id, result.credit.id)
            return (
                credit,
                await finance.get_account(user_id, source.id),
                await finance.get_account(user_id, destination.id),
            )

        credit, source, destination = asyncio.run(scenario())
        assert credit.amount == Decimal("400.00")
        assert source.current_balance == Decimal("4600.00")
        assert destination.current_balance == Decimal("400.00")

    def test_type_change_on_leg_is_rejected(self, finance, user_id, open_account):
        async def scenario():
            source = await open_account(name="Cheque")
            destination = await open_account(name="Other")
            result = await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": "10.00",
                "transaction_date": "2025-03-01",
            })
            await finance.update_transaction(user_id, result.debit.id, {"transaction_type": "credit"})

        with pytest.raises(ValidationError, match="transfer leg"):
            asyncio.run(scenario())

    def test_same_account_is_rejected(self, finance, user_id):
        account_id = uuid4()
        with pytest.raises(ValidationError, match="same account") as exc_info:
            asyncio.run(finance.create_transfer(user_id, {
                "from_account_id": account_id,
                "to_account_id": account_id,
                "amount": "10.00",
                "transaction_date": "2025-03-01",
            }))
        assert "to_account_id" in exc_info.value.field_errors

    def test_missing_destination_is_not_found(self, finance, user_id, open_account):
        async def scenario():
            source = await open_account()
            await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": uuid4(),
                "amount": "10.00",
                "transaction_date": "2025-03-01",
            })

        with pytest.raises(NotFoundError, match="Destination account"):
            asyncio.run(scenario())

    def test_failed_transfer_rolls_back(self, finance, storage, user_id, open_account, monkeypatch):
        """Test that a failure after the first balance write undoes everything."""
        original = storage.compare_and_set_aggregate
        writes = []

        async def fail_second_write(ref, expected_version, new_value):
            writes.append(ref)
            if len(writes) == 2:
                raise StorageError("disk full")
            return await original(ref, expected_version, new_value)

        async def scenario():
            source = await open_account("5000.00", name="Cheque")
            destination = await open_account("0.00", name="Other")
            monkeypatch.setattr(storage, "compare_and_set_aggregate", fail_second_write)
            with pytest.raises(StorageError):
                await finance.create_transfer(user_id, {
                    "from_account_id": source.id,
                    "to_account_id": destination.id,
                    "amount": "1000.00",
                    "transaction_date": "2025-03-01",
                })
            return (
                await finance.get_account(user_id, source.id),
                await finance.get_account(user_id, destination.id),
                await finance.transactions.list_transactions(user_id),
            )

        source, destination, rows = asyncio.run(scenario())
        assert source.current_balance == Decimal("5000.00")
        assert destination.current_balance == Decimal("0.00")
        assert rows == []


class TestBulkCategorize:
    """Tests for recategorizing many transactions at once."""

    def test_sets_category_without_touching_balance(self, finance, user_id, open_account, post):
        async def scenario():
            account = await open_account("1000.00")
            category = await finance.create_category(user_id, "Groceries")
            first = await post(account.id, "10.00", is_reviewed=False)
            second = await post(account.id, "20.00", is_reviewed=False)
            count = await finance.bulk_categorize(user_id, {
                "transaction_ids": [first.id, second.id, uuid4()],
                "category_id": category.id,
            })
            rows = await finance.transactions.list_transactions(user_id)
            return count, category, rows, await finance.get_account(user_id, account.id)

        count, category, rows, account = asyncio.run(scenario())
        assert count == 2
        assert all(r.category_id == category.id and r.is_reviewed for r in rows)
        assert account.current_balance == Decimal("970.00")

    def test_unknown_category_is_not_found(self, finance, user_id):
        with pytest.raises(NotFoundError):
            asyncio.run(finance.bulk_categorize(user_id, {
                "transaction_ids": [uuid4()],
                "category_id": uuid4(),
            }))


class TestRecurring:
    """Tests for generating and skipping recurring occurrences."""

    @staticmethod
    def _template(user_id, account_id, **overrides):
        fields = dict(
            user_id=user_id,
            account_id=account_id,
            name="Rent",
            amount="500.00",
            frequency="monthly",
            day_of_month=31,
            start_date=date(2025, 1, 1),
            transaction_type="debit",
        )
        fields.update(overrides)
        return RecurringTransaction(**fields)

    def test_generate_posts_and_advances_with_month_end_clamp(self, finance, user_id, open_account):
        async def scenario():
            account = await open_account("5000.00")
            template = await finance.register_recurring(self._template(user_id, account.id))
            first = await finance.generate_recurring_instance(user_id, template.id)
            second = await finance.generate_recurring_instance(user_id, template.id)
            template = await finance.recurring.get_recurring(user_id, template.id)
            return first, second, template, await finance.get_account(user_id, account.id)

        first, second, template, account = asyncio.run(scenario())
        assert first.transaction_date == date(2025, 1, 31)
        assert second.transaction_date == date(2025, 2, 28)
        assert template.last_occurrence == date(2025, 2, 28)
        assert template.next_occurrence == date(2025, 3, 31)
        assert first.is_recurring_instance
        assert first.source == TransactionSource.RECURRING
        assert first.recurring_id == template.id
        assert account.current_balance == Decimal("4000.00")

    def test_variable_template_needs_amount(self, finance, user_id, open_account):
        async def scenario():
            account = await open_account()
            template = await finance.register_recurring(self._template(
                user_id, account.id, amount=None, amount_max="900.00", amount_type="variable",
            ))
            with pytest.raises(ValidationError, match="Amount required"):
                await finance.generate_recurring_instance(user_id, template.id)
            return await finance.generate_recurring_instance(user_id, template.id, {"amount": "812.40"})

        transaction = asyncio.run(scenario())
        assert transaction.amount == Decimal("812.40")

    def test_skip_only_advances_cursor(self, finance, user_id, open_account):
        async def scenario():
            account = await open_account("5000.00")
            template = await finance.register_recurring(self._template(
                user_id, account.id, frequency="weekly", day_of_month=None, day_of_week=1,
                start_date=date(2025, 1, 1),
            ))
            skipped = await finance.skip_recurring(user_id, template.id)
            rows = await finance.transactions.list_transactions(user_id)
            return template, skipped, rows, await finance.get_account(user_id, account.id)

        template, skipped, rows, account = asyncio.run(scenario())
        # 2025-01-06 is the first Monday on or after the start date
        assert template.next_occurrence == date(2025, 1, 6)
        assert skipped.last_occurrence is None
        assert skipped.next_occurrence == date(2025, 1, 13)
        assert rows == []
        assert account.current_balance == Decimal("5000.00")

    def test_skip_keeps_last_generated_date(self, finance, user_id, open_account):
        async def scenario():
            account = await open_account("5000.00")
            template = await finance.register_recurring(self._template(
                user_id, account.id, day_of_month=5,
            ))
            await finance.generate_recurring_instance(user_id, template.id)
            return await finance.skip_recurring(user_id, template.id)

        skipped = asyncio.run(scenario())
        assert skipped.last_occurrence == date(2025, 1, 5)
        assert skipped.next_occurrence == date(2025, 3, 5)

    def test_auto_generate_skips_templates_needing_confirmation(self, finance, user_id, open_account):
        async def scenario():
            account = await open_account("5000.00")
            await finance.register_recurring(self._template(user_id, account.id, day_of_month=5))
            await finance.register_recurring(self._template(
                user_id, account.id, name="Electricity", amount=None, amount_max="900.00",
                amount_type="variable", day_of_month=5,
            ))
            due = await finance.get_due_recurring(user_id, date(2025, 1, 10))
            generated = await finance.auto_generate_recurring(user_id, date(2025, 1, 10))
            return due, generated

        due, generated = asyncio.run(scenario())
        assert len(due) == 2
        assert [t.description for t in generated] == ["Rent"]

    def test_unknown_template_is_not_found(self, finance, user_id):
        with pytest.raises(NotFoundError, match="Recurring transaction"):
            asyncio.run(finance.generate_recurring_instance(user_id, uuid4()))


class TestDebtsAndSavings:
    """Tests for debt payment and savings contribution symmetry."""

    def test_debt_payment_round_trip(self, finance, user_id):
        async def scenario():
            debt = await finance.open_debt(Debt(
                user_id=user_id, name="Car", original_amount="20000.00", current_balance="20000.00",
            ))
            payment = await finance.add_debt_payment(user_id, debt.id, {
                "amount": "1500.00", "payment_date": "2025-01-31",
            })
            after_add = await finance.debts.get_debt(user_id, debt.id)
            updated = await finance.update_debt_payment(user_id, debt.id, payment.id, {"amount": "2000.00"})
            after_update = await finance.debts.get_debt(user_id, debt.id)
            await finance.remove_debt_payment(user_id, debt.id, payment.id)
            after_remove = await finance.debts.get_debt(user_id, debt.id)
            return payment, after_add, updated, after_update, after_remove

        payment, after_add, updated, after_update, after_remove = asyncio.run(scenario())
        assert payment.balance_after == Decimal("18500.00")
        assert after_add.current_balance == Decimal("18500.00")
        assert updated.balance_after == Decimal("18000.00")
        assert after_update.current_balance == Decimal("18000.00")
        assert after_remove.current_balance == Decimal("20000.00")

    def test_contribution_completes_goal(self, finance, user_id):
        async def scenario():
            goal = await finance.open_savings_goal(SavingsGoal(
                user_id=user_id, name="Emergency fund",
                current_amount="48000.00", target_amount="50000.00",
            ))
            contribution = await finance.add_contribution(user_id, goal.id, {
                "amount": "2000.00", "contribution_date": "2025-02-01",
            })
            completed = await finance.savings.get_savings_goal(user_id, goal.id)
            await finance.remove_contribution(user_id, goal.id, contribution.id)
            after_remove = await finance.savings.get_savings_goal(user_id, goal.id)
            return completed, after_remove

        completed, after_remove = asyncio.run(scenario())
        assert completed.current_amount == Decimal("50000.00")
        assert completed.is_completed is True
        assert completed.completed_at is not None
        # completion is never reverted
        assert after_remove.current_amount == Decimal("48000.00")
        assert after_remove.is_completed is True

    def test_contribution_update_reapplies(self, finance, user_id):
        async def scenario():
            goal = await finance.open_savings_goal(SavingsGoal(user_id=user_id, name="Holiday"))
            contribution = await finance.add_contribution(user_id, goal.id, {
                "amount": "300.00", "contribution_date": "2025-02-01",
            })
            await finance.update_contribution(user_id, goal.id, contribution.id, {"amount": "450.00"})
            return await finance.savings.get_savings_goal(user_id, goal.id)

        goal = asyncio.run(scenario())
        assert goal.current_amount == Decimal("450.00")
        assert goal.is_completed is False

    def test_payment_on_unknown_debt_is_not_found(self, finance, user_id):
        with pytest.raises(NotFoundError, match="Debt not found"):
            asyncio.run(finance.add_debt_payment(user_id, uuid4(), {
                "amount": "10.00", "payment_date": "2025-01-31",
            }))


class TestBudgets:
    """Tests for balance-neutral monthly budgets."""

    def test_totals_are_recalculated(self, finance, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 2})
            await finance.add_budget_income(user_id, budget.id, {"name": "Salary", "expected_amount": "30000.00"})
            await finance.add_budget_item(user_id, budget.id, {"name": "Food", "planned_amount": "4000.00"})
            await finance.add_planned_one_off(user_id, budget.id, {"name": "Tyres", "amount": "2500.00"})
            return await finance.add_planned_one_off(user_id, budget.id, {
                "name": "Deposit", "amount": "1000.00", "is_completed": True,
            })

        budget = asyncio.run(scenario())
        assert budget.total_planned_income == Decimal("30000.00")
        assert budget.total_planned_expenses == Decimal("6500.00")
        assert budget.unallocated_amount == Decimal("23500.00")

    def test_lines_can_be_corrected_and_removed(self, finance, storage, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 2})
            await finance.add_budget_income(user_id, budget.id, {"name": "Salary", "expected_amount": "30000.00"})
            await finance.add_budget_item(user_id, budget.id, {"name": "Food", "planned_amount": "40000.00"})
            await finance.add_planned_one_off(user_id, budget.id, {"name": "Tyres", "amount": "2500.00"})
            (item,), (income,), (one_off,) = await _budget_lines(storage, budget.id)
            fixed = await finance.update_budget_item(user_id, budget.id, item.id, {"planned_amount": "4000.00"})
            raised = await finance.update_budget_income(user_id, budget.id, income.id, {"expected_amount": "32000.00"})
            done = await finance.update_planned_one_off(user_id, budget.id, one_off.id, {"is_completed": True})
            await finance.remove_planned_one_off(user_id, budget.id, one_off.id)
            await finance.remove_budget_income(user_id, budget.id, income.id)
            emptied = await finance.remove_budget_item(user_id, budget.id, item.id)
            return fixed, raised, done, emptied

        fixed, raised, done, emptied = asyncio.run(scenario())
        assert fixed.total_planned_expenses == Decimal("6500.00")
        assert fixed.unallocated_amount == Decimal("23500.00")
        assert raised.total_planned_income == Decimal("32000.00")
        # a completed one-off no longer counts as planned
        assert done.total_planned_expenses == Decimal("4000.00")
        assert emptied.total_planned_income == Decimal("0.00")
        assert emptied.total_planned_expenses == Decimal("0.00")

    def test_corrected_item_changes_projected_daily_expense(self, finance, storage, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 2})
            await finance.add_budget_item(user_id, budget.id, {"name": "Food", "planned_amount": "28000.00"})
            await finance.set_budget_status(user_id, budget.id, {"status": "active"})
            (item,), _, _ = await _budget_lines(storage, budget.id)
            before = await finance.generate_tracker(user_id, "2025-02-01", "2025-02-01")
            await finance.update_budget_item(user_id, budget.id, item.id, {"planned_amount": "2800.00"})
            after = await finance.generate_tracker(user_id, "2025-02-01", "2025-02-01")
            return before[0], after[0]

        before, after = asyncio.run(scenario())
        assert before.expected_expenses == Decimal("1000.00")
        assert after.expected_expenses == Decimal("100.00")

    def test_unknown_line_is_not_found(self, finance, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 2})
            await finance.remove_budget_item(user_id, budget.id, uuid4())

        with pytest.raises(NotFoundError, match="Budget item"):
            asyncio.run(scenario())

    def test_line_update_on_closed_budget_is_rejected(self, finance, storage, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 4})
            await finance.add_budget_income(user_id, budget.id, {"name": "Salary", "expected_amount": "100.00"})
            (income,) = await storage.list_budget_incomes(budget.id)
            await finance.set_budget_status(user_id, budget.id, {"status": "closed"})
            await finance.update_budget_income(user_id, budget.id, income.id, {"expected_amount": "200.00"})

        with pytest.raises(ValidationError, match="closed"):
            asyncio.run(scenario())

    def test_second_budget_for_month_conflicts(self, finance, user_id):
        async def scenario():
            await finance.create_budget(user_id, {"year": 2025, "month": 2})
            await finance.create_budget(user_id, {"year": 2025, "month": 2})

        with pytest.raises(ConflictError):
            asyncio.run(scenario())

    def test_closed_budget_rejects_changes(self, finance, user_id):
        async def scenario():
            budget = await finance.create_budget(user_id, {"year": 2025, "month": 3})
            await finance.set_budget_status(user_id, budget.id, {"status": "closed"})
            await finance.add_budget_item(user_id, budget.id, {"name": "Food", "planned_amount": "10.00"})

        with pytest.raises(ValidationError, match="closed"):
            asyncio.run(scenario())


class TestAuditTrail:
    """Tests that operations leave a correlated audit trail."""

    def test_transfer_events_share_correlation_id(self, finance, user_id, open_account, audit_storage):
        async def scenario():
            source = await open_account(name="Cheque")
            destination = await open_account(name="Other")
            await finance.create_transfer(user_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": "10.00",
                "transaction_date": "2025-03-01",
            })
            recent = await audit_storage.get_recent_events(limit=3)
            return await audit_storage.get_events_by_correlation_id(recent[0].correlation_id)

        events = asyncio.run(scenario())
        types = [e.event_type for e in events]
        assert types.count(AuditEventType.BALANCE_APPLIED) == 2
        assert AuditEventType.TRANSFER_CREATED in types

    def test_failure_is_audited(self, finance, user_id, audit_storage):
        async def scenario():
            with pytest.raises(NotFoundError):
                await finance.delete_transaction(user_id, uuid4())
            return await audit_storage.get_recent_events(limit=1)

        (event,) = asyncio.run(scenario())
        assert event.event_type == AuditEventType.OPERATION_FAILED
        assert event.error_code == "not_found"
        assert event.details["operation"] == "delete_transaction"
