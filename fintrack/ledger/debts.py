"""
Debt Payments

A payment reduces the debt's outstanding balance:

    add     -> balance - amount   (balance_after recorded on the payment)
    update  -> balance + old - new
    remove  -> balance + amount
"""

from typing import Any, Union
from uuid import UUID

import structlog

from fintrack.errors import NotFoundError
from fintrack.ledger.base import LedgerService
from fintrack.ledger.mutator import debt_ref
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import Debt, DebtPayment
from fintrack.money import negate
from fintrack.validation.inputs import DebtPaymentInput, UpdateDebtPaymentInput

logger = structlog.get_logger(__name__)


class DebtLedger(LedgerService):
    """Debts and the payments that pay them down."""

    async def open_debt(self, debt: Debt) -> Debt:
        """Store a debt with its starting balance."""
        async with self._operation("open_debt", debt.user_id):
            saved = await self._storage.save_debt(debt)
        logger.info("debt_opened", debt_id=str(saved.id))
        return saved

    async def add_debt_payment(
        self,
        user_id: UUID,
        debt_id: UUID,
        data: Union[DebtPaymentInput, dict[str, Any]],
    ) -> DebtPayment:
        async with self._operation("add_debt_payment", user_id) as ctx:
            data = self._validator.parse(DebtPaymentInput, data, "Invalid debt payment data")
            await self._get_debt(user_id, debt_id)

            balance = await self._mutator.apply(debt_ref(user_id, debt_id), negate(data.amount), ctx)
            payment = await self._storage.save_debt_payment(DebtPayment(
                debt_id=debt_id,
                amount=data.amount,
                principal_amount=data.principal_amount,
                interest_amount=data.interest_amount,
                payment_date=data.payment_date,
                transaction_id=data.transaction_id,
                balance_after=balance,
            ))
            ctx.record(AuditEventBuilder.child_record_event(
                event_type=AuditEventType.DEBT_PAYMENT_ADDED,
                user_id=user_id,
                entity_type="debt_payment",
                entity_id=payment.id,
                amount=payment.amount,
                parent_value=balance,
                correlation_id=ctx.correlation_id,
            ))

        return payment

    async def update_debt_payment(
        self,
        user_id: UUID,
        debt_id: UUID,
        payment_id: UUID,
        data: Union[UpdateDebtPaymentInput, dict[str, Any]],
    ) -> DebtPayment:
        async with self._operation("update_debt_payment", user_id) as ctx:
            data = self._validator.parse(UpdateDebtPaymentInput, data, "Invalid debt payment update")
            await self._get_debt(user_id, debt_id)
            existing = await self._get_payment(debt_id, payment_id)

            changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
            new_amount = changes.get("amount", existing.amount)
            if new_amount != existing.amount:
                ref = debt_ref(user_id, debt_id)
                await self._mutator.apply(ref, existing.amount, ctx)
                changes["balance_after"] = await self._mutator.apply(ref, negate(new_amount), ctx)

            updated = await self._storage.update_debt_payment(existing.model_copy(update=changes))
            ctx.record(AuditEventBuilder.child_record_event(
                event_type=AuditEventType.DEBT_PAYMENT_UPDATED,
                user_id=user_id,
                entity_type="debt_payment",
                entity_id=payment_id,
                amount=updated.amount,
                parent_value=changes.get("balance_after", existing.balance_after),
                correlation_id=ctx.correlation_id,
            ))

        return updated

    async def remove_debt_payment(self, user_id: UUID, debt_id: UUID, payment_id: UUID) -> bool:
        async with self._operation("remove_debt_payment", user_id) as ctx:
            await self._get_debt(user_id, debt_id)
            existing = await self._get_payment(debt_id, payment_id)

            balance = await self._mutator.apply(debt_ref(user_id, debt_id), existing.amount, ctx)
            deleted = await self._storage.delete_debt_payment(payment_id, debt_id)
            ctx.record(AuditEventBuilder.child_record_event(
                event_type=AuditEventType.DEBT_PAYMENT_REMOVED,
                user_id=user_id,
                entity_type="debt_payment",
                entity_id=payment_id,
                amount=existing.amount,
                parent_value=balance,
                correlation_id=ctx.correlation_id,
            ))

        return deleted

    async def get_debt(self, user_id: UUID, debt_id: UUID) -> Debt:
        return await self._get_debt(user_id, debt_id)

    async def list_debt_payments(self, user_id: UUID, debt_id: UUID) -> list[DebtPayment]:
        await self._get_debt(user_id, debt_id)
        return await self._storage.list_debt_payments(debt_id)

    async def _get_debt(self, user_id: UUID, debt_id: UUID) -> Debt:
        debt = await self._storage.get_debt(debt_id, user_id)
        if debt is None:
            raise NotFoundError("Debt", debt_id)
        return debt

    async def _get_payment(self, debt_id: UUID, payment_id: UUID) -> DebtPayment:
        payment = await self._storage.get_debt_payment(payment_id, debt_id)
        if payment is None:
            raise NotFoundError("Debt payment", payment_id)
        return payment
