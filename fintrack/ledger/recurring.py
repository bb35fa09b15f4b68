"""
Recurring Templates

A template's ``next_occurrence`` is its cursor. Generating an instance
posts a transaction dated at the cursor and advances it one period;
skipping only advances it.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from fintrack.errors import NotFoundError, ValidationError
from fintrack.ledger.base import LedgerService, OperationContext
from fintrack.ledger.transactions import TransactionLedger
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import (
    RecurringAmountType,
    RecurringTransaction,
    Transaction,
    TransactionSource,
)
from fintrack.schedule import first_occurrence, next_occurrence
from fintrack.services.storage import LedgerStorageInterface
from fintrack.validation.inputs import GenerateInstanceInput

logger = structlog.get_logger(__name__)


class RecurringLedger(LedgerService):
    """Registers templates and turns their occurrences into transactions."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        transactions: TransactionLedger,
        **kwargs,
    ):
        super().__init__(storage, **kwargs)
        self._transactions = transactions

    async def register_template(self, template: RecurringTransaction) -> RecurringTransaction:
        """
        Store a template, placing its cursor on the first matching date.

        Raises:
            NotFoundError: If the template's account isn't the user's
        """
        async with self._operation("register_recurring", template.user_id):
            if await self._storage.get_account(template.account_id, template.user_id) is None:
                raise NotFoundError("Account", template.account_id)
            await self._require_category(template.category_id, template.user_id)

            if template.next_occurrence is None:
                template = template.model_copy(update={
                    "next_occurrence": first_occurrence(
                        template.start_date,
                        template.frequency,
                        template.day_of_month,
                        template.day_of_week,
                    ),
                })
            saved = await self._storage.save_recurring(template)

        logger.info(
            "recurring_registered",
            recurring_id=str(saved.id),
            frequency=saved.frequency.value,
            next_occurrence=str(saved.next_occurrence),
        )
        return saved

    async def generate_recurring_instance(
        self,
        user_id: UUID,
        recurring_id: UUID,
        data: Union[GenerateInstanceInput, dict[str, Any], None] = None,
    ) -> Transaction:
        """
        Post the occurrence at the template's cursor and advance it.

        Args:
            user_id: Owner
            recurring_id: Template to generate from
            data: Optional ``{"amount": ...}``; required for variable templates

        Raises:
            ValidationError: No amount for a variable template, or no cursor
            NotFoundError: Template doesn't exist for this user
        """
        async with self._operation("generate_recurring_instance", user_id) as ctx:
            data = self._validator.parse(
                GenerateInstanceInput, data or {}, "Invalid recurring instance data"
            )
            recurring = await self._get(user_id, recurring_id)
            transaction = await self._generate(ctx, recurring, data.amount)

        return transaction

    async def skip_recurring(self, user_id: UUID, recurring_id: UUID) -> RecurringTransaction:
        """Advance the cursor one period without posting anything."""
        async with self._operation("skip_recurring", user_id) as ctx:
            recurring = await self._get(user_id, recurring_id)
            skipped = self._cursor(recurring)
            updated = await self._storage.update_recurring(self._skip_past(recurring, skipped))
            ctx.record(AuditEventBuilder.recurring_skipped(
                user_id=user_id,
                recurring_id=recurring_id,
                skipped_date=skipped,
                next_occurrence=updated.next_occurrence,
                correlation_id=ctx.correlation_id,
            ))

        return updated

    async def get_recurring(self, user_id: UUID, recurring_id: UUID) -> RecurringTransaction:
        return await self._get(user_id, recurring_id)

    async def get_due_recurring(
        self,
        user_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[RecurringTransaction]:
        """Active templates with a cursor on or before ``as_of`` (default today)."""
        return await self._storage.find_due_recurring(user_id, as_of or date.today())

    async def auto_generate_recurring(
        self,
        user_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[Transaction]:
        """
        Generate one instance for every due template that needs no input.

        Only fixed-amount templates with an amount and no confirmation
        requirement qualify. All instances commit together.
        """
        async with self._operation("auto_generate_recurring", user_id) as ctx:
            due = await self._storage.find_due_recurring(user_id, as_of or date.today())
            generated = []
            for recurring in due:
                if not _auto_generatable(recurring):
                    continue
                generated.append(await self._generate(ctx, recurring, None))

        logger.info("recurring_auto_generated", count=len(generated), due=len(due))
        return generated

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _get(self, user_id: UUID, recurring_id: UUID) -> RecurringTransaction:
        recurring = await self._storage.get_recurring(recurring_id, user_id)
        if recurring is None:
            raise NotFoundError("Recurring transaction", recurring_id)
        return recurring

    async def _generate(
        self,
        ctx: OperationContext,
        recurring: RecurringTransaction,
        amount: Optional[Decimal],
    ) -> Transaction:
        amount = amount if amount is not None else recurring.amount
        if amount is None:
            raise ValidationError(
                "Amount required for variable recurring transactions",
                {"amount": ["Provide the amount for this occurrence"]},
            )
        occurrence = self._cursor(recurring)

        transaction = await self._transactions.post(ctx, Transaction(
            user_id=recurring.user_id,
            account_id=recurring.account_id,
            category_id=recurring.category_id,
            amount=amount,
            transaction_type=recurring.transaction_type,
            transaction_date=occurrence,
            description=recurring.description or recurring.name,
            source=TransactionSource.RECURRING,
            is_recurring_instance=True,
            recurring_id=recurring.id,
            is_reviewed=True,
        ))
        await self._storage.update_recurring(self._advance(recurring, occurrence))
        return transaction

    @staticmethod
    def _cursor(recurring: RecurringTransaction) -> date:
        if recurring.next_occurrence is None:
            raise ValidationError(
                "Recurring transaction has no next occurrence",
                {"next_occurrence": ["Template is not scheduled"]},
            )
        return recurring.next_occurrence

    @staticmethod
    def _advance(recurring: RecurringTransaction, consumed: date) -> RecurringTransaction:
        """Record ``consumed`` as generated and move the cursor past it."""
        return recurring.model_copy(update={
            "last_occurrence": consumed,
            "next_occurrence": _following(recurring, consumed),
        })

    @staticmethod
    def _skip_past(recurring: RecurringTransaction, skipped: date) -> RecurringTransaction:
        """Move the cursor past ``skipped``; ``last_occurrence`` is left alone."""
        return recurring.model_copy(update={
            "next_occurrence": _following(recurring, skipped),
        })


def _following(recurring: RecurringTransaction, occurrence: date) -> date:
    return next_occurrence(
        occurrence,
        recurring.frequency,
        recurring.day_of_month,
        recurring.day_of_week,
    )


def _auto_generatable(recurring: RecurringTransaction) -> bool:
    return (
        recurring.amount_type == RecurringAmountType.FIXED
        and recurring.amount is not None
        and not recurring.requires_confirmation
    )
