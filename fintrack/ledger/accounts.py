"""Account and category registration."""

from typing import Any, Optional, Union
from uuid import UUID

import structlog

from fintrack.config import get_settings
from fintrack.errors import NotFoundError
from fintrack.ledger.base import LedgerService
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import Account, Category
from fintrack.validation.inputs import CreateAccountInput

logger = structlog.get_logger(__name__)


class AccountLedger(LedgerService):
    """
    Opens accounts and registers categories.

    The opening balance is written once, here. Every later change to
    ``current_balance`` goes through the balance mutator.
    """

    async def create_account(
        self,
        user_id: UUID,
        data: Union[CreateAccountInput, dict[str, Any]],
    ) -> Account:
        async with self._operation("create_account", user_id) as ctx:
            data = self._validator.parse(CreateAccountInput, data, "Invalid account data")
            account = Account(
                user_id=user_id,
                name=data.name,
                account_type=data.account_type,
                classification=data.classification,
                currency=data.currency or get_settings().ledger.default_currency,
                current_balance=data.opening_balance,
                credit_limit=data.credit_limit,
            )
            saved = await self._storage.save_account(account)
            ctx.record(AuditEventBuilder.account_opened(
                user_id=user_id,
                account_id=saved.id,
                opening_balance=saved.current_balance,
                correlation_id=ctx.correlation_id,
            ))

        logger.info(
            "account_created",
            account_id=str(saved.id),
            account_type=saved.account_type.value,
            classification=saved.classification.value,
        )
        return saved

    async def get_account(self, user_id: UUID, account_id: UUID) -> Account:
        account = await self._storage.get_account(account_id, user_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    async def list_accounts(self, user_id: UUID) -> list[Account]:
        return await self._storage.list_accounts(user_id)

    async def create_category(
        self,
        user_id: UUID,
        name: str,
        category_type: Optional[str] = "expense",
    ) -> Category:
        category = Category(user_id=user_id, name=name, category_type=category_type)
        return await self._storage.save_category(category)
