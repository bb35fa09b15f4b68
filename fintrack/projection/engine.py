"""
Forward Balance Projection

DESIGN DECISION: The projection is a pure simulation over a snapshot of
ledger state. It reads templates, budgets, accounts and recent debits,
and writes only daily tracker rows. Account balances are never touched.

ALGORITHM (per generate_range call):
1. Delete existing entries in [start, end]; output always replaces
2. Gather active recurring templates, budgets, accounts and the debits
   dated in the baseline window strictly before ``start``
3. Baseline spend = sum(recent debits) / window days (fixed divisor)
4. Monthly planned expense from the active budget, if any
5. Seed the running balance with the spending accounts' balances
6. Fold day by day:
       running += income - expenses - debt payments - predicted spend
   flagging (never clamping) days that end below zero
7. Return entries in date order

The fold is strictly sequential: each day starts from the previous
day's closing balance.

Single days can also be entered or adjusted by hand (create_entry,
update_entry, delete_entry). Such edits last until the next generation
over their date replaces them.
"""

from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

import structlog

from fintrack.audit import AuditLogger, create_correlation_id
from fintrack.config import get_settings
from fintrack.config.settings import TrackerSettings
from fintrack.errors import FinTrackError, NotFoundError, ValidationError
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import (
    Budget,
    BudgetStatus,
    RecurringFrequency,
    RecurringTransaction,
    TransactionType,
    utcnow,
)
from fintrack.models.tracker import DailyTrackerEntry, TrackerAlert
from fintrack.money import ZERO, format_money, money_sum, quantize
from fintrack.schedule import days_in_month, iter_days, sunday_first_weekday
from fintrack.services.storage import LedgerStorageInterface, TrackerStorageInterface
from fintrack.validation import InputValidator
from fintrack.validation.inputs import TrackerEntryInput, UpdateTrackerEntryInput

logger = structlog.get_logger(__name__)


def template_matches(template: RecurringTransaction, day: date) -> bool:
    """
    Monthly templates match on day of month, weekly ones on day of week
    (0 = Sunday). Yearly templates never match.
    """
    if template.frequency == RecurringFrequency.MONTHLY:
        return template.day_of_month == day.day
    if template.frequency == RecurringFrequency.WEEKLY:
        return template.day_of_week == sunday_first_weekday(day)
    return False


def find_active_budget(budgets: list[Budget]) -> Optional[Budget]:
    for budget in budgets:
        if budget.status == BudgetStatus.ACTIVE:
            return budget
    return None


class DailyTracker:
    """
    Generates, reads and clears the per-day forward projection.

    Usage:
        tracker = DailyTracker(storage)
        entries = await tracker.generate_range(user_id, "2025-02-01", "2025-02-28")
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        tracker_storage: Optional[TrackerStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
        settings: Optional[TrackerSettings] = None,
    ):
        self._ledger = ledger_storage
        self._tracker = tracker_storage or ledger_storage
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().tracker
        self._validator = validator or InputValidator(tracker_settings=self._settings)

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def generate_range(self, user_id: UUID, start_date: Any, end_date: Any) -> list[DailyTrackerEntry]:
        """
        Project every day from ``start_date`` to ``end_date`` inclusive.

        Args:
            user_id: Owner
            start_date: First day, as a date or ``YYYY-MM-DD``
            end_date: Last day, as a date or ``YYYY-MM-DD``

        Returns:
            One entry per day, in date order

        Raises:
            ValidationError: Unparseable dates, end before start, or a
                range longer than the configured maximum
        """
        async with self._audited("generate_tracker", user_id) as correlation_id:
            date_range = self._validator.parse_date_range(start_date, end_date)
            start, end = date_range.start_date, date_range.end_date

            async with self._tracker.unit_of_work():
                await self._tracker.delete_entries(user_id, start, end)
                entries = await self._project(user_id, start, end)
                await self._tracker.save_entries(entries)

        alert_days = [entry for entry in entries if entry.has_alerts]
        await self._audit_logger.log(AuditEventBuilder.tracker_generated(
            user_id=user_id,
            start_date=start,
            end_date=end,
            entry_count=len(entries),
            alert_days=len(alert_days),
            correlation_id=correlation_id,
        ))
        if alert_days:
            await self._audit_logger.log(AuditEventBuilder.negative_balance_projected(
                user_id=user_id,
                first_date=alert_days[0].date,
                lowest_balance=min(entry.running_balance for entry in alert_days),
                correlation_id=correlation_id,
            ))

        return entries

    async def _project(self, user_id: UUID, start: date, end: date) -> list[DailyTrackerEntry]:
        window = self._settings.baseline_window_days

        templates = await self._ledger.list_recurring(user_id, active_only=True)
        budgets = await self._ledger.list_budgets(user_id)
        accounts = await self._ledger.list_accounts(user_id)
        recent_debits = await self._ledger.list_transactions(
            user_id,
            transaction_type=TransactionType.DEBIT,
            date_from=start - timedelta(days=window),
            date_to=start - timedelta(days=1),
        )

        predicted_spend = quantize(money_sum(t.amount for t in recent_debits) / window)

        budget = find_active_budget(budgets)
        monthly_expense = budget.total_planned_expenses if budget else None

        running = money_sum(a.current_balance for a in accounts if a.is_spending)

        logger.debug(
            "projection_inputs",
            user_id=str(user_id),
            templates=len(templates),
            recent_debits=len(recent_debits),
            predicted_spend=format_money(predicted_spend),
            seed=format_money(running),
        )

        entries = []
        for day in iter_days(start, end):
            matched = [t for t in templates if template_matches(t, day)]
            income_sources = [t for t in matched if t.transaction_type == TransactionType.CREDIT]
            debt_sources = [t for t in matched if t.transaction_type == TransactionType.DEBIT]

            income = money_sum(t.expected_amount for t in income_sources)
            debt_payments = money_sum(t.expected_amount for t in debt_sources)

            expense_details = None
            expenses = ZERO
            if monthly_expense is not None:
                month_days = days_in_month(day.year, day.month)
                expenses = quantize(monthly_expense / month_days)
                expense_details = {
                    "budget_id": str(budget.id),
                    "monthly_planned_expenses": format_money(monthly_expense),
                    "days_in_month": month_days,
                    "daily_amount": format_money(expenses),
                }

            running = quantize(running + income - expenses - debt_payments - predicted_spend)

            alerts = _negative_balance_alerts(running)

            entries.append(DailyTrackerEntry(
                user_id=user_id,
                date=day,
                expected_income=income,
                expected_debt_payments=debt_payments,
                expected_expenses=expenses,
                predicted_spend=predicted_spend,
                running_balance=running,
                has_alerts=alerts is not None,
                alerts=alerts,
                is_payday=income > 0,
                income_details=_template_details(income_sources),
                debt_details=_template_details(debt_sources),
                expense_details=expense_details,
            ))

        return entries

    # =========================================================================
    # READS AND CLEARING
    # =========================================================================

    async def get_range(self, user_id: UUID, start_date: Any, end_date: Any) -> list[DailyTrackerEntry]:
        date_range = self._validator.parse_date_range(start_date, end_date)
        return await self._tracker.list_entries(user_id, date_range.start_date, date_range.end_date)

    async def get_by_date(self, user_id: UUID, entry_date: Any) -> Optional[DailyTrackerEntry]:
        date_range = self._validator.parse_date_range(entry_date, entry_date)
        return await self._tracker.get_entry(user_id, date_range.start_date)

    async def get_entry_by_id(self, user_id: UUID, entry_id: UUID) -> DailyTrackerEntry:
        entry = await self._tracker.get_entry_by_id(entry_id, user_id)
        if entry is None:
            raise NotFoundError("Daily tracker entry", entry_id)
        return entry

    async def clear_range(self, user_id: UUID, start_date: Any, end_date: Any) -> int:
        """Delete entries in the range without regenerating. Returns the count."""
        async with self._audited("clear_tracker_range", user_id) as correlation_id:
            date_range = self._validator.parse_date_range(start_date, end_date)
            async with self._tracker.unit_of_work():
                deleted = await self._tracker.delete_entries(
                    user_id, date_range.start_date, date_range.end_date
                )

        await self._audit_logger.log(AuditEventBuilder.tracker_cleared(
            user_id=user_id,
            start_date=date_range.start_date,
            end_date=date_range.end_date,
            deleted_count=deleted,
            correlation_id=correlation_id,
        ))
        return deleted

    # =========================================================================
    # MANUAL ENTRIES
    # =========================================================================

    async def create_entry(
        self,
        user_id: UUID,
        data: Union[TrackerEntryInput, dict[str, Any]],
    ) -> DailyTrackerEntry:
        """
        Store a hand-entered day.

        A later ``generate_range`` over the same date replaces it.

        Raises:
            ValidationError: Bad input, or the date already has an entry
        """
        async with self._audited("create_tracker_entry", user_id) as correlation_id:
            data = self._validator.parse(TrackerEntryInput, data, "Invalid daily tracker data")
            async with self._tracker.unit_of_work():
                if await self._tracker.get_entry(user_id, data.date) is not None:
                    raise ValidationError(
                        "An entry for this date already exists",
                        {"date": ["Duplicate tracker date"]},
                    )
                entry = DailyTrackerEntry(user_id=user_id, **data.model_dump())
                entry = _with_alerts(entry)
                await self._tracker.save_entries([entry])

        await self._audit_logger.log(AuditEventBuilder.tracker_entry_event(
            event_type=AuditEventType.TRACKER_ENTRY_CREATED,
            user_id=user_id,
            entry_id=entry.id,
            entry_date=entry.date,
            details={"running_balance": entry.running_balance},
            correlation_id=correlation_id,
        ))
        return entry

    async def update_entry(
        self,
        user_id: UUID,
        entry_id: UUID,
        data: Union[UpdateTrackerEntryInput, dict[str, Any]],
    ) -> DailyTrackerEntry:
        """
        Change figures on one day, typically to pin a ``manual_override``.

        Only the fields present are changed; ``manual_override`` may be
        cleared with None. Alerts follow the resulting running balance.

        Raises:
            NotFoundError: Entry doesn't exist for this user
        """
        async with self._audited("update_tracker_entry", user_id) as correlation_id:
            data = self._validator.parse(UpdateTrackerEntryInput, data, "Invalid daily tracker data")
            async with self._tracker.unit_of_work():
                existing = await self.get_entry_by_id(user_id, entry_id)
                changes = {
                    k: v for k, v in data.model_dump(exclude_unset=True).items()
                    if v is not None or k == "manual_override"
                }
                changes["calculated_at"] = utcnow()
                entry = await self._tracker.update_entry(
                    _with_alerts(existing.model_copy(update=changes))
                )

        await self._audit_logger.log(AuditEventBuilder.tracker_entry_event(
            event_type=AuditEventType.TRACKER_ENTRY_UPDATED,
            user_id=user_id,
            entry_id=entry_id,
            entry_date=entry.date,
            details={"fields": sorted(data.model_fields_set)},
            correlation_id=correlation_id,
        ))
        return entry

    async def delete_entry(self, user_id: UUID, entry_id: UUID) -> None:
        """
        Raises:
            NotFoundError: Entry doesn't exist for this user
        """
        async with self._audited("delete_tracker_entry", user_id) as correlation_id:
            async with self._tracker.unit_of_work():
                existing = await self.get_entry_by_id(user_id, entry_id)
                await self._tracker.delete_entry(entry_id, user_id)

        await self._audit_logger.log(AuditEventBuilder.tracker_entry_event(
            event_type=AuditEventType.TRACKER_ENTRY_DELETED,
            user_id=user_id,
            entry_id=entry_id,
            entry_date=existing.date,
            correlation_id=correlation_id,
        ))

    @asynccontextmanager
    async def _audited(self, operation: str, user_id: UUID) -> AsyncIterator[UUID]:
        """Yield a correlation id; audit and re-raise any domain failure."""
        correlation_id = create_correlation_id()
        try:
            yield correlation_id
        except FinTrackError as e:
            await self._audit_logger.log(AuditEventBuilder.operation_failed(
                operation=operation,
                error_code=e.code,
                error_message=str(e),
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            raise


def _negative_balance_alerts(running: Decimal) -> Optional[list[dict[str, Any]]]:
    if running >= 0:
        return None
    return [TrackerAlert(
        message=f"Projected balance is negative: {format_money(running)}",
        running_balance=running,
    ).to_payload()]


def _with_alerts(entry: DailyTrackerEntry) -> DailyTrackerEntry:
    alerts = _negative_balance_alerts(entry.running_balance)
    return entry.model_copy(update={"alerts": alerts, "has_alerts": alerts is not None})


def _template_details(templates: list[RecurringTransaction]) -> Optional[list[dict[str, Any]]]:
    if not templates:
        return None
    return [
        {
            "recurring_id": str(t.id),
            "name": t.name,
            "amount": format_money(t.expected_amount),
            "frequency": t.frequency.value,
        }
        for t in templates
    ]
