"""
Savings Contributions

Contributions mirror debt payments with the opposite sign:

    add     -> current_amount + amount
    update  -> current_amount - old + new
    remove  -> current_amount - amount

A goal that reaches its target on an add is marked completed. Completion
is one-way: later updates or removals never clear it.
"""

from typing import Any, Union
from uuid import UUID

import structlog

from fintrack.errors import NotFoundError
from fintrack.ledger.base import LedgerService
from fintrack.ledger.mutator import goal_ref
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import SavingsContribution, SavingsGoal, utcnow
from fintrack.money import negate
from fintrack.validation.inputs import ContributionInput, UpdateContributionInput

logger = structlog.get_logger(__name__)


class SavingsLedger(LedgerService):
    """Savings goals and the contributions that fill them."""

    async def open_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        async with self._operation("open_savings_goal", goal.user_id):
            saved = await self._storage.save_savings_goal(goal)
        logger.info("savings_goal_opened", goal_id=str(saved.id))
        return saved

    async def add_contribution(
        self,
        user_id: UUID,
        goal_id: UUID,
        data: Union[ContributionInput, dict[str, Any]],
    ) -> SavingsContribution:
        async with self._operation("add_contribution", user_id) as ctx:
            data = self._validator.parse(ContributionInput, data, "Invalid contribution data")
            goal = await self._get_goal(user_id, goal_id)

            current = await self._mutator.apply(goal_ref(user_id, goal_id), data.amount, ctx)
            contribution = await self._storage.save_contribution(SavingsContribution(
                savings_goal_id=goal_id,
                amount=data.amount,
                contribution_date=data.contribution_date,
                transaction_id=data.transaction_id,
                source=data.source,
            ))
            ctx.record(AuditEventBuilder.child_record_event(
                event_type=AuditEventType.CONTRIBUTION_ADDED,
                user_id=user_id,
                entity_type="savings_contribution",
                entity_id=contribution.id,
                amount=contribution.amount,
                parent_value=current,
                correlation_id=ctx.correlation_id,
            ))

            if (
                goal.target_amount is not None
                and not goal.is_completed
                and current >= goal.target_amount
            ):
                await self._storage.mark_goal_completed(goal_id, user_id, utcnow())
                ctx.record(AuditEventBuilder.goal_completed(
                    user_id=user_id,
                    goal_id=goal_id,
                    current_amount=current,
                    target_amount=goal.target_amount,
                    correlation_id=ctx.correlation_id,
                ))
                logger.info("savings_goal_completed", goal_id=str(goal_id))

        return contribution

    async def update_contribution(
        self,
        user_id: UUID,
        goal_id: UUID,
        contribution_id: UUID,
        data: Union[UpdateContributionInput, dict[str, Any]],
    ) -> SavingsContribution:
        async with self._operation("update_contribution", user_id) as ctx:
            data = self._validator.parse(UpdateContributionInput, data, "Invalid contribution update")
            await self._get_goal(user_id, goal_id)
            existing = await self._get_contribution(goal_id, contribution_id)

            changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
            new_amount = changes.get("amount", existing.amount)
            current = None
            if new_amount != existing.amount:
                ref = goal_ref(user_id, goal_id)
                await self._mutator.apply(ref, negate(existing.amount), ctx)
                current = await self._mutator.apply(ref, new_amount, ctx)

            updated = await self._storage.update_contribution(existing.model_copy(update=changes))
            if current is not None:
                ctx.record(AuditEventBuilder.child_record_event(
                    event_type=AuditEventType.CONTRIBUTION_UPDATED,
                    user_id=user_id,
                    entity_type="savings_contribution",
                    entity_id=contribution_id,
                    amount=updated.amount,
                    parent_value=current,
                    correlation_id=ctx.correlation_id,
                ))

        return updated

    async def remove_contribution(
        self,
        user_id: UUID,
        goal_id: UUID,
        contribution_id: UUID,
    ) -> bool:
        async with self._operation("remove_contribution", user_id) as ctx:
            await self._get_goal(user_id, goal_id)
            existing = await self._get_contribution(goal_id, contribution_id)

            current = await self._mutator.apply(goal_ref(user_id, goal_id), negate(existing.amount), ctx)
            deleted = await self._storage.delete_contribution(contribution_id, goal_id)
            ctx.record(AuditEventBuilder.child_record_event(
                event_type=AuditEventType.CONTRIBUTION_REMOVED,
                user_id=user_id,
                entity_type="savings_contribution",
                entity_id=contribution_id,
                amount=existing.amount,
                parent_value=current,
                correlation_id=ctx.correlation_id,
            ))

        return deleted

    async def get_savings_goal(self, user_id: UUID, goal_id: UUID) -> SavingsGoal:
        return await self._get_goal(user_id, goal_id)

    async def list_contributions(self, user_id: UUID, goal_id: UUID) -> list[SavingsContribution]:
        await self._get_goal(user_id, goal_id)
        return await self._storage.list_contributions(goal_id)

    async def _get_goal(self, user_id: UUID, goal_id: UUID) -> SavingsGoal:
        goal = await self._storage.get_savings_goal(goal_id, user_id)
        if goal is None:
            raise NotFoundError("Savings goal", goal_id)
        return goal

    async def _get_contribution(self, goal_id: UUID, contribution_id: UUID) -> SavingsContribution:
        contribution = await self._storage.get_contribution(contribution_id, goal_id)
        if contribution is None:
            raise NotFoundError("Savings contribution", contribution_id)
        return contribution
