"""
Typed failures raised by ledger and projection operations.

Every operation either succeeds completely or raises one of these
before any balance is mutated. Callers map them to user-facing
messages; the ``field_errors`` mapping names the offending field.
"""

from typing import Optional


class FinTrackError(Exception):
    """Base exception for all domain failures."""

    code = "error"

    def __init__(
        self,
        message: str,
        field_errors: Optional[dict[str, list[str]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "field_errors": self.field_errors,
        }


class NotFoundError(FinTrackError):
    """A referenced record does not exist under the caller's ownership."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = str(entity_id)


class ValidationError(FinTrackError):
    """Malformed input or an operation the current state does not allow."""

    code = "validation_error"


class ConflictError(FinTrackError):
    """A unique-period record already exists (e.g. a second budget for a month)."""

    code = "conflict"


def build_validation_error(message: str, issues: list[dict]) -> ValidationError:
    """
    Build a ValidationError from pydantic error dicts.

    Groups messages by dotted field path, so ``("legs", 0, "amount")``
    becomes ``"legs.0.amount"``.
    """
    field_errors: dict[str, list[str]] = {}
    for issue in issues:
        path = ".".join(str(part) for part in issue.get("loc", ())) or "__root__"
        field_errors.setdefault(path, []).append(issue.get("msg", "Invalid value"))
    return ValidationError(message, field_errors)
