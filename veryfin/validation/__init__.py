"""Input validation package."""

from veryfin.validation.validator import (
    ValidationFailedError,
    issues_from_errors,
    parse_payload,
    validate_progress_amount,
)

__all__ = [
    "ValidationFailedError",
    "issues_from_errors",
    "parse_payload",
    "validate_progress_amount",
]
