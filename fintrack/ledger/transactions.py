"""
Transaction Ledger

Every create, update and delete of a transaction moves the owning
account's balance by exactly the signed delta of the change:

    debit   -> balance - amount
    credit  -> balance + amount
    update  -> reverse the old delta, apply the new one
    delete  -> reverse the stored delta

A transfer is two rows sharing a ``transfer_pair_id``: a debit on the
source account and a credit on the destination. Both legs are created,
re-amounted and deleted together.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import structlog

from fintrack.errors import NotFoundError, ValidationError
from fintrack.ledger.base import LedgerService, OperationContext
from fintrack.ledger.mutator import account_ref, transaction_delta
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import (
    Transaction,
    TransactionSource,
    TransactionType,
    TransferResult,
)
from fintrack.money import negate
from fintrack.validation.inputs import (
    BulkCategorizeInput,
    CreateTransactionInput,
    CreateTransferInput,
    UpdateTransactionInput,
)

logger = structlog.get_logger(__name__)

NULLABLE_FIELDS = frozenset({"category_id", "notes"})


class TransactionLedger(LedgerService):
    """Posts, edits and removes transactions against account balances."""

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_transaction(
        self,
        user_id: UUID,
        data: Union[CreateTransactionInput, dict[str, Any]],
    ) -> Transaction:
        """
        Record a debit or credit and move the account balance.

        Raises:
            ValidationError: Bad input, or a "transfer" type
            NotFoundError: Account or category doesn't belong to the user
        """
        async with self._operation("create_transaction", user_id) as ctx:
            data = self._validator.parse(CreateTransactionInput, data, "Invalid transaction data")
            if data.transaction_type == "transfer":
                raise ValidationError(
                    "Use create_transfer for transfer transactions",
                    {"transaction_type": ["Transfers must be created with create_transfer"]},
                )

            account, category = await asyncio.gather(
                self._storage.get_account(data.account_id, user_id),
                self._find_category(data.category_id, user_id),
            )
            if account is None:
                raise NotFoundError("Account", data.account_id)
            if data.category_id is not None and category is None:
                raise NotFoundError("Category", data.category_id)

            transaction = Transaction(
                user_id=user_id,
                account_id=account.id,
                category_id=data.category_id,
                amount=data.amount,
                currency=data.currency or account.currency,
                transaction_type=data.transaction_type,
                transaction_date=data.transaction_date,
                description=data.description,
                notes=data.notes,
                is_reviewed=True if data.is_reviewed is None else data.is_reviewed,
            )
            saved = await self.post(ctx, transaction)

        logger.info(
            "transaction_created",
            transaction_id=str(saved.id),
            transaction_type=saved.transaction_type.value,
        )
        return saved

    async def post(self, ctx: OperationContext, transaction: Transaction) -> Transaction:
        """
        Save one transaction row and apply its delta inside ``ctx``.

        Used by create_transaction and by recurring instance generation.
        """
        saved = await self._storage.save_transaction(transaction)
        await self._mutator.apply(
            account_ref(saved.user_id, saved.account_id),
            transaction_delta(saved.transaction_type, saved.amount),
            ctx,
        )
        event_type = (
            AuditEventType.RECURRING_INSTANCE_GENERATED
            if saved.is_recurring_instance
            else AuditEventType.TRANSACTION_CREATED
        )
        ctx.record(AuditEventBuilder.transaction_event(
            event_type=event_type,
            user_id=saved.user_id,
            transaction_id=saved.id,
            details={
                "account_id": saved.account_id,
                "amount": saved.amount,
                "transaction_type": saved.transaction_type.value,
                "recurring_id": saved.recurring_id,
            },
            correlation_id=ctx.correlation_id,
        ))
        return saved

    async def create_transfer(
        self,
        user_id: UUID,
        data: Union[CreateTransferInput, dict[str, Any]],
    ) -> TransferResult:
        """
        Move money between two of the user's accounts.

        Creates a debit leg on the source and a credit leg on the
        destination, linked by a fresh transfer pair id.

        Raises:
            ValidationError: Bad input, or source equals destination
            NotFoundError: Either account doesn't belong to the user
        """
        async with self._operation("create_transfer", user_id) as ctx:
            data = self._validator.parse(CreateTransferInput, data, "Invalid transfer data")
            if data.from_account_id == data.to_account_id:
                raise ValidationError(
                    "Cannot transfer to the same account",
                    {"to_account_id": ["Must differ from from_account_id"]},
                )

            source, destination = await asyncio.gather(
                self._storage.get_account(data.from_account_id, user_id),
                self._storage.get_account(data.to_account_id, user_id),
            )
            if source is None:
                raise NotFoundError("Source account", data.from_account_id)
            if destination is None:
                raise NotFoundError("Destination account", data.to_account_id)

            pair_id = uuid4()
            currency = data.currency or source.currency
            shared = dict(
                user_id=user_id,
                amount=data.amount,
                currency=currency,
                transaction_date=data.transaction_date,
                description=data.description,
                notes=data.notes,
                source=TransactionSource.MANUAL,
                transfer_pair_id=pair_id,
                is_reviewed=True,
            )
            debit = await self._storage.save_transaction(Transaction(
                account_id=source.id,
                transaction_type=TransactionType.DEBIT,
                transfer_to_account_id=destination.id,
                **shared,
            ))
            credit = await self._storage.save_transaction(Transaction(
                account_id=destination.id,
                transaction_type=TransactionType.CREDIT,
                **shared,
            ))

            await self._mutator.apply(account_ref(user_id, source.id), negate(data.amount), ctx)
            await self._mutator.apply(account_ref(user_id, destination.id), data.amount, ctx)

            ctx.record(AuditEventBuilder.transfer_created(
                user_id=user_id,
                transfer_pair_id=pair_id,
                from_account_id=source.id,
                to_account_id=destination.id,
                amount=data.amount,
                correlation_id=ctx.correlation_id,
            ))

        logger.info("transfer_created", transfer_pair_id=str(pair_id))
        return TransferResult(debit=debit, credit=credit)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_transaction(
        self,
        user_id: UUID,
        transaction_id: UUID,
        data: Union[UpdateTransactionInput, dict[str, Any]],
    ) -> Transaction:
        """
        Change a transaction's fields.

        If the amount or the type changes, the old delta is reversed and
        the new one applied. Changing a transfer leg's amount re-amounts
        both legs; a transfer leg's type cannot change.

        Raises:
            ValidationError: Bad input or a type change on a transfer leg
            NotFoundError: Transaction or new category not found
        """
        async with self._operation("update_transaction", user_id) as ctx:
            data = self._validator.parse(UpdateTransactionInput, data, "Invalid transaction update")
            # Only category and notes may be cleared with an explicit None.
            changes = {
                key: value
                for key, value in data.model_dump(exclude_unset=True).items()
                if value is not None or key in NULLABLE_FIELDS
            }

            existing = await self._storage.get_transaction(transaction_id, user_id)
            if existing is None:
                raise NotFoundError("Transaction", transaction_id)
            if changes.get("category_id") is not None:
                await self._require_category(changes["category_id"], user_id)

            new_type = changes.get("transaction_type") or existing.transaction_type
            new_amount = changes.get("amount") or existing.amount
            type_changed = new_type != existing.transaction_type
            amount_changed = new_amount != existing.amount

            if existing.is_transfer_leg:
                if type_changed:
                    raise ValidationError(
                        "Cannot change the type of a transfer leg",
                        {"transaction_type": ["Delete the transfer and create a new one"]},
                    )
                if amount_changed:
                    await self._reamount_transfer(ctx, existing, new_amount)
            elif type_changed or amount_changed:
                await self._reapply(ctx, existing, new_type, new_amount)

            updated = await self._storage.update_transaction(existing.model_copy(update=changes))
            ctx.record(AuditEventBuilder.transaction_event(
                event_type=AuditEventType.TRANSACTION_UPDATED,
                user_id=user_id,
                transaction_id=transaction_id,
                details={
                    "changed_fields": sorted(changes),
                    "old_amount": existing.amount,
                    "new_amount": new_amount,
                    "old_type": existing.transaction_type.value,
                    "new_type": TransactionType(new_type).value,
                },
                correlation_id=ctx.correlation_id,
            ))

        return updated

    async def _reapply(
        self,
        ctx: OperationContext,
        transaction: Transaction,
        new_type: TransactionType,
        new_amount: Decimal,
    ) -> None:
        ref = account_ref(transaction.user_id, transaction.account_id)
        await self._mutator.apply(
            ref, negate(transaction_delta(transaction.transaction_type, transaction.amount)), ctx
        )
        await self._mutator.apply(ref, transaction_delta(new_type, new_amount), ctx)

    async def _reamount_transfer(self, ctx: OperationContext, leg: Transaction, new_amount: Decimal) -> None:
        legs = await self._storage.find_by_transfer_pair(leg.transfer_pair_id, leg.user_id)
        for pair_leg in legs:
            await self._reapply(ctx, pair_leg, pair_leg.transaction_type, new_amount)
            if pair_leg.id != leg.id:
                await self._storage.update_transaction(
                    pair_leg.model_copy(update={"amount": new_amount})
                )

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> int:
        """
        Remove a transaction and reverse its effect on the balance.

        Deleting either leg of a transfer removes both legs.

        Returns:
            Number of rows deleted (1, or 2 for a transfer)
        """
        async with self._operation("delete_transaction", user_id) as ctx:
            existing = await self._storage.get_transaction(transaction_id, user_id)
            if existing is None:
                raise NotFoundError("Transaction", transaction_id)

            if existing.is_transfer_leg:
                legs = await self._storage.find_by_transfer_pair(existing.transfer_pair_id, user_id)
            else:
                legs = [existing]

            for leg in legs:
                await self._mutator.apply(
                    account_ref(user_id, leg.account_id),
                    negate(transaction_delta(leg.transaction_type, leg.amount)),
                    ctx,
                )

            if existing.is_transfer_leg:
                deleted = await self._storage.delete_by_transfer_pair(existing.transfer_pair_id, user_id)
            else:
                deleted = int(await self._storage.delete_transaction(transaction_id, user_id))

            ctx.record(AuditEventBuilder.transaction_event(
                event_type=AuditEventType.TRANSACTION_DELETED,
                user_id=user_id,
                transaction_id=transaction_id,
                details={
                    "deleted_count": deleted,
                    "transfer_pair_id": existing.transfer_pair_id,
                },
                correlation_id=ctx.correlation_id,
            ))

        return deleted

    # =========================================================================
    # CATEGORIES AND QUERIES
    # =========================================================================

    async def bulk_categorize(
        self,
        user_id: UUID,
        data: Union[BulkCategorizeInput, dict[str, Any]],
    ) -> int:
        """Set the category on many transactions. Balances are untouched."""
        async with self._operation("bulk_categorize", user_id) as ctx:
            data = self._validator.parse(BulkCategorizeInput, data, "Invalid bulk categorize data")
            await self._require_category(data.category_id, user_id)

            updated = await self._storage.bulk_update_category(
                data.transaction_ids, user_id, data.category_id
            )
            ctx.record(AuditEventBuilder.transactions_recategorized(
                user_id=user_id,
                category_id=data.category_id,
                updated_count=updated,
                correlation_id=ctx.correlation_id,
            ))

        return updated

    async def get_transaction(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._storage.get_transaction(transaction_id, user_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        return await self._storage.list_transactions(
            user_id,
            transaction_type=transaction_type,
            account_id=account_id,
            date_from=date_from,
            date_to=date_to,
        )
