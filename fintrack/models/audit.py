"""
Audit Models for FinTrack

Every balance change and every projection run is logged for audit purposes.
This provides:
1. Complete traceability of how a balance reached its current value
2. Debugging information when a balance looks wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fintrack.models.ledger import AggregateRef, utcnow
from fintrack.money import format_money


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger operation has its own event type.
    """
    # Aggregates
    BALANCE_APPLIED = "balance_applied"
    ACCOUNT_OPENED = "account_opened"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSFER_CREATED = "transfer_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTIONS_RECATEGORIZED = "transactions_recategorized"

    # Recurring templates
    RECURRING_INSTANCE_GENERATED = "recurring_instance_generated"
    RECURRING_SKIPPED = "recurring_skipped"

    # Debts and savings
    DEBT_PAYMENT_ADDED = "debt_payment_added"
    DEBT_PAYMENT_UPDATED = "debt_payment_updated"
    DEBT_PAYMENT_REMOVED = "debt_payment_removed"
    CONTRIBUTION_ADDED = "contribution_added"
    CONTRIBUTION_UPDATED = "contribution_updated"
    CONTRIBUTION_REMOVED = "contribution_removed"
    GOAL_COMPLETED = "goal_completed"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_TOTALS_RECALCULATED = "budget_totals_recalculated"
    BUDGET_STATUS_CHANGED = "budget_status_changed"

    # Projection
    TRACKER_GENERATED = "tracker_generated"
    TRACKER_CLEARED = "tracker_cleared"
    TRACKER_ENTRY_CREATED = "tracker_entry_created"
    TRACKER_ENTRY_UPDATED = "tracker_entry_updated"
    TRACKER_ENTRY_DELETED = "tracker_entry_deleted"
    NEGATIVE_BALANCE_PROJECTED = "negative_balance_projected"

    # System events
    OPERATION_FAILED = "operation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_money(value)
    if isinstance(value, (UUID, date, datetime)):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[UUID] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'debt')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., both legs of a transfer)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": _jsonable(self.details),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_record(self) -> list[str]:
        """
        Flatten to a row of strings for append-only storage.

        Columns: [event_id, timestamp, event_type, severity, user_id,
        entity_type, entity_id, correlation_id, description, details_json,
        error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.user_id) if self.user_id else "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(_jsonable(self.details)) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.balance_applied(ref, delta, new_value, correlation_id)
        event = AuditEventBuilder.transfer_created(user_id, pair_id, ...)
    """

    @staticmethod
    def balance_applied(
        ref: AggregateRef,
        delta: Decimal,
        new_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_APPLIED,
            user_id=ref.user_id,
            entity_type=ref.kind.value,
            entity_id=ref.id,
            correlation_id=correlation_id,
            description=f"Applied {format_money(delta)} to {ref.kind.value}",
            details={
                "delta": delta,
                "new_value": new_value,
            },
        )

    @staticmethod
    def account_opened(
        user_id: UUID,
        account_id: UUID,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_OPENED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account opened with {format_money(opening_balance)}",
            details={"opening_balance": opening_balance},
        )

    @staticmethod
    def transaction_event(
        event_type: AuditEventType,
        user_id: UUID,
        transaction_id: UUID,
        details: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Created / updated / deleted / recurring-instance events for one row."""
        verb = event_type.value.replace("_", " ")
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=verb.capitalize(),
            details=details,
        )

    @staticmethod
    def transfer_created(
        user_id: UUID,
        transfer_pair_id: UUID,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_CREATED,
            user_id=user_id,
            entity_type="transfer",
            entity_id=transfer_pair_id,
            correlation_id=correlation_id,
            description=f"Transfer of {format_money(amount)} created",
            details={
                "from_account_id": from_account_id,
                "to_account_id": to_account_id,
                "amount": amount,
            },
        )

    @staticmethod
    def transactions_recategorized(
        user_id: UUID,
        category_id: UUID,
        updated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_RECATEGORIZED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"{updated_count} transactions recategorized",
            details={"updated_count": updated_count},
        )

    @staticmethod
    def recurring_skipped(
        user_id: UUID,
        recurring_id: UUID,
        skipped_date: date,
        next_occurrence: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_SKIPPED,
            user_id=user_id,
            entity_type="recurring_transaction",
            entity_id=recurring_id,
            correlation_id=correlation_id,
            description=f"Skipped occurrence on {skipped_date}",
            details={
                "skipped_date": skipped_date,
                "next_occurrence": next_occurrence,
            },
        )

    @staticmethod
    def child_record_event(
        event_type: AuditEventType,
        user_id: UUID,
        entity_type: str,
        entity_id: UUID,
        amount: Decimal,
        parent_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Debt payment and savings contribution add/update/remove events."""
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {format_money(amount)}",
            details={
                "amount": amount,
                "parent_value": parent_value,
            },
        )

    @staticmethod
    def goal_completed(
        user_id: UUID,
        goal_id: UUID,
        current_amount: Decimal,
        target_amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            user_id=user_id,
            entity_type="savings_goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description="Savings goal reached its target",
            details={
                "current_amount": current_amount,
                "target_amount": target_amount,
            },
        )

    @staticmethod
    def budget_event(
        event_type: AuditEventType,
        user_id: UUID,
        budget_id: UUID,
        details: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=event_type.value.replace("_", " ").capitalize(),
            details=details,
        )

    @staticmethod
    def tracker_generated(
        user_id: UUID,
        start_date: date,
        end_date: date,
        entry_count: int,
        alert_days: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRACKER_GENERATED,
            user_id=user_id,
            entity_type="daily_tracker",
            correlation_id=correlation_id,
            description=f"Projected {entry_count} days from {start_date} to {end_date}",
            details={
                "start_date": start_date,
                "end_date": end_date,
                "entry_count": entry_count,
                "alert_days": alert_days,
            },
        )

    @staticmethod
    def tracker_cleared(
        user_id: UUID,
        start_date: date,
        end_date: date,
        deleted_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRACKER_CLEARED,
            user_id=user_id,
            entity_type="daily_tracker",
            correlation_id=correlation_id,
            description=f"Cleared {deleted_count} projected days",
            details={
                "start_date": start_date,
                "end_date": end_date,
                "deleted_count": deleted_count,
            },
        )

    @staticmethod
    def tracker_entry_event(
        event_type: AuditEventType,
        user_id: UUID,
        entry_id: UUID,
        entry_date: date,
        details: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Manual create / update / delete of a single forecast day."""
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="daily_tracker_entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()} for {entry_date}",
            details={"date": entry_date, **(details or {})},
        )

    @staticmethod
    def negative_balance_projected(
        user_id: UUID,
        first_date: date,
        lowest_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NEGATIVE_BALANCE_PROJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="daily_tracker",
            correlation_id=correlation_id,
            description=f"Projected balance goes negative on {first_date}",
            details={
                "first_date": first_date,
                "lowest_balance": lowest_balance,
            },
        )

    @staticmethod
    def operation_failed(
        operation: str,
        error_code: str,
        error_message: str,
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Operation failed: {operation}",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation},
        )
