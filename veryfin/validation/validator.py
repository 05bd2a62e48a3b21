"""
Input Validation

DESIGN DECISION: Validation happens at the flow boundary, before
anything reaches storage or the streak engine.

STAGE 1 - SCHEMA VALIDATION:
- Payloads are parsed into their pydantic Create/Update models
- Type, range and cross-field checks live on the models themselves

STAGE 2 - OPERATION RULES:
- Rules that belong to one operation rather than to a model
  (e.g., goal progress must be a real non-negative number)

Every failure becomes a ValidationFailedError carrying one
ValidationIssue per offending field. Nothing is silently fixed.
"""

from decimal import Decimal
from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from veryfin.models.finance import ValidationIssue


ModelT = TypeVar("ModelT", bound=BaseModel)


class ValidationFailedError(Exception):
    """Input was malformed or broke a rule. Carries field-level detail."""

    def __init__(self, message: str, issues: list[ValidationIssue]):
        self.issues = issues
        super().__init__(message)

    def issues_as_dicts(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]


def issues_from_errors(errors: list[dict]) -> list[ValidationIssue]:
    """
    Convert pydantic-style error dicts into ValidationIssues.

    Works for both pydantic.ValidationError.errors() and FastAPI's
    RequestValidationError.errors().
    """
    issues = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        issues.append(ValidationIssue(
            field=".".join(location) or "body",
            issue_type=str(error.get("type", "invalid")),
            message=str(error.get("msg", "Invalid value")),
        ))
    return issues


def parse_payload(
    model_cls: Type[ModelT],
    data: Union[ModelT, dict[str, Any]],
    operation: str,
) -> ModelT:
    """
    Stage 1: parse raw input into its model.

    Args:
        model_cls: Target model
        data: A dict, or an already-built model instance
        operation: Name used in the error message

    Raises:
        ValidationFailedError: With one issue per invalid field
    """
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationFailedError(
            f"Invalid data for {operation}",
            issues_from_errors(e.errors()),
        ) from e


def _invalid_amount(issue_type: str, message: str) -> ValidationFailedError:
    return ValidationFailedError(
        "Invalid amount",
        [ValidationIssue(field="amount", issue_type=issue_type, message=message)],
    )


def validate_progress_amount(value: Any) -> Decimal:
    """
    Stage 2: goal progress must be a finite, non-negative number.

    Strings, booleans and None are rejected even when they look numeric;
    the progress endpoint takes a JSON number.

    Returns:
        The amount as Decimal, exactly as given
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise _invalid_amount("invalid_type", "Amount must be a number")

    amount = Decimal(str(value))
    if not amount.is_finite():
        raise _invalid_amount("invalid_value", "Amount must be a finite number")
    if amount < 0:
        raise _invalid_amount("out_of_range", "Amount must be 0 or greater")

    return amount
