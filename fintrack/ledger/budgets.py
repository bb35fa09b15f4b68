"""
Monthly Budgets

Budgets never touch balances. Their totals are derived figures,
recalculated from the child rows after every change:

    total_planned_income   = sum of incomes
    total_planned_expenses = sum of items + sum of incomplete one-offs
    unallocated_amount     = income - expenses

The projection engine reads ``total_planned_expenses`` from the active
budget.
"""

import asyncio
from typing import Any, Union
from uuid import UUID

import structlog
from pydantic import BaseModel

from fintrack.errors import ConflictError, NotFoundError, ValidationError
from fintrack.ledger.base import LedgerService, OperationContext
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import (
    Budget,
    BudgetIncome,
    BudgetItem,
    BudgetStatus,
    PlannedOneOff,
)
from fintrack.money import format_money, money_sum, quantize
from fintrack.services.storage import DuplicateError
from fintrack.validation.inputs import (
    BudgetIncomeInput,
    BudgetItemInput,
    BudgetStatusInput,
    CreateBudgetInput,
    PlannedOneOffInput,
    UpdateBudgetIncomeInput,
    UpdateBudgetItemInput,
    UpdatePlannedOneOffInput,
)

logger = structlog.get_logger(__name__)


class BudgetPlanner(LedgerService):
    """One budget per user per month, with items, incomes and one-offs."""

    async def create_budget(
        self,
        user_id: UUID,
        data: Union[CreateBudgetInput, dict[str, Any]],
    ) -> Budget:
        """
        Raises:
            ConflictError: If the user already has a budget for that month
        """
        async with self._operation("create_budget", user_id) as ctx:
            data = self._validator.parse(CreateBudgetInput, data, "Invalid budget data")
            period = f"{data.year}-{data.month:02d}"
            if await self._storage.find_budget_by_month(user_id, data.year, data.month):
                raise ConflictError(f"Budget already exists for {period}")

            try:
                budget = await self._storage.save_budget(Budget(
                    user_id=user_id,
                    year=data.year,
                    month=data.month,
                    notes=data.notes,
                ))
            except DuplicateError:
                raise ConflictError(f"Budget already exists for {period}")

            ctx.record(AuditEventBuilder.budget_event(
                event_type=AuditEventType.BUDGET_CREATED,
                user_id=user_id,
                budget_id=budget.id,
                details={"period": period},
                correlation_id=ctx.correlation_id,
            ))

        return budget

    async def add_budget_item(
        self,
        user_id: UUID,
        budget_id: UUID,
        data: Union[BudgetItemInput, dict[str, Any]],
    ) -> Budget:
        async with self._operation("add_budget_item", user_id) as ctx:
            data = self._validator.parse(BudgetItemInput, data, "Invalid budget item")
            await self._get_open_budget(user_id, budget_id)
            await self._require_category(data.category_id, user_id)
            await self._storage.save_budget_item(BudgetItem(budget_id=budget_id, **data.model_dump()))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def update_budget_item(
        self,
        user_id: UUID,
        budget_id: UUID,
        item_id: UUID,
        data: Union[UpdateBudgetItemInput, dict[str, Any]],
    ) -> Budget:
        async with self._operation("update_budget_item", user_id) as ctx:
            data = self._validator.parse(UpdateBudgetItemInput, data, "Invalid budget item update")
            await self._get_open_budget(user_id, budget_id)
            item = await self._storage.get_budget_item(item_id, budget_id)
            if item is None:
                raise NotFoundError("Budget item", item_id)
            changes = _changes(data)
            await self._require_category(changes.get("category_id"), user_id)
            await self._storage.update_budget_item(item.model_copy(update=changes))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def remove_budget_item(self, user_id: UUID, budget_id: UUID, item_id: UUID) -> Budget:
        async with self._operation("remove_budget_item", user_id) as ctx:
            await self._get_open_budget(user_id, budget_id)
            if not await self._storage.delete_budget_item(item_id, budget_id):
                raise NotFoundError("Budget item", item_id)
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def add_budget_income(
        self,
        user_id: UUID,
        budget_id: UUID,
        data: Union[BudgetIncomeInput, dict[str, Any]],
    ) -> Budget:
        async with self._operation("add_budget_income", user_id) as ctx:
            data = self._validator.parse(BudgetIncomeInput, data, "Invalid budget income")
            await self._get_open_budget(user_id, budget_id)
            await self._storage.save_budget_income(BudgetIncome(budget_id=budget_id, **data.model_dump()))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def update_budget_income(
        self,
        user_id: UUID,
        budget_id: UUID,
        income_id: UUID,
        data: Union[UpdateBudgetIncomeInput, dict[str, Any]],
    ) -> Budget:
        async with self._operation("update_budget_income", user_id) as ctx:
            data = self._validator.parse(UpdateBudgetIncomeInput, data, "Invalid budget income update")
            await self._get_open_budget(user_id, budget_id)
            income = await self._storage.get_budget_income(income_id, budget_id)
            if income is None:
                raise NotFoundError("Budget income", income_id)
            await self._storage.update_budget_income(income.model_copy(update=_changes(data)))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def remove_budget_income(self, user_id: UUID, budget_id: UUID, income_id: UUID) -> Budget:
        async with self._operation("remove_budget_income", user_id) as ctx:
            await self._get_open_budget(user_id, budget_id)
            if not await self._storage.delete_budget_income(income_id, budget_id):
                raise NotFoundError("Budget income", income_id)
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def add_planned_one_off(
        self,
        user_id: UUID,
        budget_id: UUID,
        data: Union[PlannedOneOffInput, dict[str, Any]],
    ) -> Budget:
        async with self._operation("add_planned_one_off", user_id) as ctx:
            data = self._validator.parse(PlannedOneOffInput, data, "Invalid planned one-off")
            await self._get_open_budget(user_id, budget_id)
            await self._storage.save_planned_one_off(PlannedOneOff(budget_id=budget_id, **data.model_dump()))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def update_planned_one_off(
        self,
        user_id: UUID,
        budget_id: UUID,
        one_off_id: UUID,
        data: Union[UpdatePlannedOneOffInput, dict[str, Any]],
    ) -> Budget:
        """Marking a one-off completed drops it from the planned expenses."""
        async with self._operation("update_planned_one_off", user_id) as ctx:
            data = self._validator.parse(UpdatePlannedOneOffInput, data, "Invalid planned one-off update")
            await self._get_open_budget(user_id, budget_id)
            one_off = await self._storage.get_planned_one_off(one_off_id, budget_id)
            if one_off is None:
                raise NotFoundError("Planned one-off", one_off_id)
            await self._storage.update_planned_one_off(one_off.model_copy(update=_changes(data)))
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def remove_planned_one_off(self, user_id: UUID, budget_id: UUID, one_off_id: UUID) -> Budget:
        async with self._operation("remove_planned_one_off", user_id) as ctx:
            await self._get_open_budget(user_id, budget_id)
            if not await self._storage.delete_planned_one_off(one_off_id, budget_id):
                raise NotFoundError("Planned one-off", one_off_id)
            budget = await self._recalculate(ctx, user_id, budget_id)

        return budget

    async def set_budget_status(
        self,
        user_id: UUID,
        budget_id: UUID,
        data: Union[BudgetStatusInput, dict[str, Any]],
    ) -> Budget:
        """Move a budget between draft, active and closed. Closed is final."""
        async with self._operation("set_budget_status", user_id) as ctx:
            data = self._validator.parse(BudgetStatusInput, data, "Invalid budget status")
            budget = await self._get_open_budget(user_id, budget_id)
            previous = budget.status

            await self._storage.update_budget(budget.model_copy(update={"status": data.status}))
            budget = await self._recalculate(ctx, user_id, budget_id)
            ctx.record(AuditEventBuilder.budget_event(
                event_type=AuditEventType.BUDGET_STATUS_CHANGED,
                user_id=user_id,
                budget_id=budget_id,
                details={"from": previous.value, "to": budget.status.value},
                correlation_id=ctx.correlation_id,
            ))

        return budget

    async def get_budget(self, user_id: UUID, budget_id: UUID) -> Budget:
        budget = await self._storage.get_budget(budget_id, user_id)
        if budget is None:
            raise NotFoundError("Budget", budget_id)
        return budget

    async def list_budgets(self, user_id: UUID) -> list[Budget]:
        return await self._storage.list_budgets(user_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _get_open_budget(self, user_id: UUID, budget_id: UUID) -> Budget:
        budget = await self.get_budget(user_id, budget_id)
        if budget.status == BudgetStatus.CLOSED:
            raise ValidationError(
                "Budget is closed",
                {"status": ["Closed budgets cannot be changed"]},
            )
        return budget

    async def _recalculate(self, ctx: OperationContext, user_id: UUID, budget_id: UUID) -> Budget:
        budget = await self.get_budget(user_id, budget_id)
        items, incomes, one_offs = await asyncio.gather(
            self._storage.list_budget_items(budget_id),
            self._storage.list_budget_incomes(budget_id),
            self._storage.list_planned_one_offs(budget_id),
        )

        income = money_sum(i.expected_amount for i in incomes)
        expenses = money_sum(
            [i.planned_amount for i in items]
            + [o.amount for o in one_offs if not o.is_completed]
        )
        updated = await self._storage.update_budget(budget.model_copy(update={
            "total_planned_income": income,
            "total_planned_expenses": expenses,
            "unallocated_amount": quantize(income - expenses),
        }))

        ctx.record(AuditEventBuilder.budget_event(
            event_type=AuditEventType.BUDGET_TOTALS_RECALCULATED,
            user_id=user_id,
            budget_id=budget_id,
            details={
                "total_planned_income": format_money(income),
                "total_planned_expenses": format_money(expenses),
            },
            correlation_id=ctx.correlation_id,
        ))
        return updated


def _changes(data: BaseModel) -> dict[str, Any]:
    return {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
