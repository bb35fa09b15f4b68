"""
Balance Mutator

The only code that writes an aggregate's current value.

Each call reads (value, version), adds the delta with exact decimal
arithmetic and writes back with a compare-and-set on the version. A
concurrent writer makes the compare-and-set fail; the read-modify-write
is then retried from a fresh read.

Calling ``apply`` twice with the same delta applies it twice. Callers
invoke it exactly once per logical change.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fintrack.audit import AuditLogger
from fintrack.config import get_settings
from fintrack.config.settings import LedgerSettings
from fintrack.errors import NotFoundError
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import AggregateKind, AggregateRef, TransactionType
from fintrack.money import negate, quantize, to_money
from fintrack.services.storage import ConcurrencyConflictError, LedgerStorageInterface

if TYPE_CHECKING:
    from fintrack.ledger.base import OperationContext

logger = structlog.get_logger(__name__)

AGGREGATE_LABELS = {
    AggregateKind.ACCOUNT: "Account",
    AggregateKind.DEBT: "Debt",
    AggregateKind.SAVINGS_GOAL: "SavingsGoal",
}


def transaction_delta(transaction_type: Union[TransactionType, str], amount: Decimal) -> Decimal:
    """Debits subtract from the account, credits add."""
    if TransactionType(transaction_type) == TransactionType.DEBIT:
        return negate(amount)
    return quantize(amount)


def account_ref(user_id: UUID, account_id: UUID) -> AggregateRef:
    return AggregateRef(kind=AggregateKind.ACCOUNT, id=account_id, user_id=user_id)


def debt_ref(user_id: UUID, debt_id: UUID) -> AggregateRef:
    return AggregateRef(kind=AggregateKind.DEBT, id=debt_id, user_id=user_id)


def goal_ref(user_id: UUID, goal_id: UUID) -> AggregateRef:
    return AggregateRef(kind=AggregateKind.SAVINGS_GOAL, id=goal_id, user_id=user_id)


class BalanceMutator:
    """
    Applies signed deltas to accounts, debts and savings goals.

    Only the ledger services hold a reference to this.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    async def apply(
        self,
        ref: AggregateRef,
        delta: Union[Decimal, str],
        ctx: Optional["OperationContext"] = None,
    ) -> Decimal:
        """
        Add ``delta`` to the aggregate's stored value.

        Args:
            ref: The account, debt or goal to change
            delta: Signed amount, as a Decimal or decimal string
            ctx: Operation whose audit trail records the change

        Returns:
            The new stored value

        Raises:
            NotFoundError: If the aggregate doesn't exist for this user
            ConcurrencyConflictError: If every retry lost a write race
        """
        amount = to_money(delta)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.conflict_retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.conflict_retry_wait_seconds,
                max=1,
            ),
            retry=retry_if_exception_type(ConcurrencyConflictError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                new_value = await self._apply_once(ref, amount)

        event = AuditEventBuilder.balance_applied(
            ref=ref,
            delta=amount,
            new_value=new_value,
            correlation_id=ctx.correlation_id if ctx else None,
        )
        if ctx is not None:
            ctx.record(event)
        elif self._audit_logger:
            await self._audit_logger.log(event)

        return new_value

    async def _apply_once(self, ref: AggregateRef, amount: Decimal) -> Decimal:
        current = await self._storage.get_aggregate_value(ref)
        if current is None:
            raise NotFoundError(AGGREGATE_LABELS[ref.kind], ref.id)

        value, version = current
        new_value = quantize(value + amount)
        try:
            await self._storage.compare_and_set_aggregate(ref, version, new_value)
        except ConcurrencyConflictError:
            logger.warning("balance_write_conflict", aggregate=str(ref), version=version)
            raise
        return new_value
