"""
Shared plumbing for ledger services.

Every ledger operation runs inside ``LedgerService._operation``:
- one storage unit of work, so the event record and its balance writes
  commit together or not at all
- one correlation id shared by every audit event the operation emits
- audit events are buffered and only logged once the unit of work has
  committed; a failed operation logs a single ``operation_failed`` event
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
from uuid import UUID

from fintrack.audit import AuditLogger, create_correlation_id
from fintrack.errors import FinTrackError, NotFoundError
from fintrack.ledger.mutator import BalanceMutator
from fintrack.models.audit import AuditEvent, AuditEventBuilder
from fintrack.models.ledger import Category
from fintrack.services.storage import LedgerStorageInterface
from fintrack.validation import InputValidator


@dataclass
class OperationContext:
    """State carried through one ledger operation."""

    operation: str
    user_id: UUID
    correlation_id: UUID = field(default_factory=create_correlation_id)
    events: list[AuditEvent] = field(default_factory=list)

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


class LedgerService:
    """Base class wiring storage, mutator, validator and audit logger."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        mutator: Optional[BalanceMutator] = None,
        validator: Optional[InputValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._mutator = mutator or BalanceMutator(storage, self._audit_logger)
        self._validator = validator or InputValidator()

    @asynccontextmanager
    async def _operation(self, name: str, user_id: UUID) -> AsyncIterator[OperationContext]:
        ctx = OperationContext(operation=name, user_id=user_id)
        try:
            async with self._storage.unit_of_work():
                yield ctx
        except Exception as e:
            code = e.code if isinstance(e, FinTrackError) else type(e).__name__
            await self._audit_logger.log(AuditEventBuilder.operation_failed(
                operation=name,
                error_code=code,
                error_message=str(e),
                user_id=user_id,
                correlation_id=ctx.correlation_id,
            ))
            raise

        for event in ctx.events:
            await self._audit_logger.log(event)

    async def _find_category(
        self,
        category_id: Optional[UUID],
        user_id: UUID,
    ) -> Optional[Category]:
        if category_id is None:
            return None
        return await self._storage.get_category(category_id, user_id)

    async def _require_category(self, category_id: Optional[UUID], user_id: UUID) -> None:
        if category_id is not None and await self._find_category(category_id, user_id) is None:
            raise NotFoundError("Category", category_id)
