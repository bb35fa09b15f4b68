"""
Input Validation

DESIGN DECISION: Validation happens before any lookup or write.

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required fields (pydantic input models)
- Amounts parsed as two-digit decimals, floats refused

STAGE 2 - LIMIT CHECKS:
- Amounts above the configured ceiling
- Date ranges longer than the projection allows

IMPORTANT: Validation NEVER silently fixes issues.
Every failure is raised as a ValidationError naming the offending field.
"""

from decimal import Decimal
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fintrack.config import get_settings
from fintrack.config.settings import LedgerSettings, TrackerSettings
from fintrack.errors import ValidationError, build_validation_error
from fintrack.money import to_money
from fintrack.validation.inputs import DateRangeInput

InputT = TypeVar("InputT", bound=BaseModel)


class InputValidator:
    """
    Parses raw operation input into validated input models.

    Stage 1: Schema validation (pydantic)
    Stage 2: Limit checks from settings
    """

    def __init__(
        self,
        ledger_settings: Optional[LedgerSettings] = None,
        tracker_settings: Optional[TrackerSettings] = None,
    ):
        settings = get_settings()
        self._ledger = ledger_settings or settings.ledger
        self._tracker = tracker_settings or settings.tracker
        self._max_amount = to_money(self._ledger.max_amount)

    def parse(
        self,
        model: type[InputT],
        data: Union[InputT, dict[str, Any]],
        message: str,
    ) -> InputT:
        """
        Validate ``data`` against ``model``.

        Raises:
            ValidationError: with per-field messages
        """
        if isinstance(data, model):
            data = data.model_dump(exclude_unset=True)
        if not isinstance(data, dict):
            raise ValidationError(message, {"__root__": ["Expected an object"]})

        try:
            parsed = model.model_validate(data)
        except PydanticValidationError as e:
            raise build_validation_error(message, e.errors())

        self._check_amounts(parsed, message)
        return parsed

    def _check_amounts(self, parsed: BaseModel, message: str) -> None:
        field_errors: dict[str, list[str]] = {}
        for name in type(parsed).model_fields:
            value = getattr(parsed, name)
            if isinstance(value, Decimal) and abs(value) > self._max_amount:
                field_errors[name] = [f"Amount exceeds the maximum of {self._max_amount}"]
        if field_errors:
            raise ValidationError(message, field_errors)

    def parse_date_range(self, start_date: Any, end_date: Any) -> DateRangeInput:
        """Parse an inclusive date range and enforce the configured maximum length."""
        date_range = self.parse(
            DateRangeInput,
            {"start_date": start_date, "end_date": end_date},
            "Invalid date range",
        )
        if date_range.day_count > self._tracker.max_range_days:
            raise ValidationError(
                "Invalid date range",
                {"end_date": [f"Range may not exceed {self._tracker.max_range_days} days"]},
            )
        return date_range
