# Overview: Domain error taxonomy and small input validators shared by the services.

from __future__ import annotations

from typing import Any, Iterable


# Maximum price: $999,999,999.99 (99,999,999,999 cents)
# Keeps property-scale amounts well inside a 64-bit column
MAX_AMOUNT_CENTS = 99_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level conflict (concurrent modification, uniqueness violation)."""


class NotFoundError(ValueError):
    """404-level missing entity."""


class NotEligibleError(ValueError):
    """
    403/422-level business eligibility failure.

    The actor or the relationship between the parties does not allow the
    operation (e.g. reviewing someone without a settled sale).
    """


def require_positive_cents(value: Any, field: str) -> int:
    """
    Validate an amount in minor currency units.

    Rejects bools, floats and anything that is not a strictly positive int.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed ({MAX_AMOUNT_CENTS} cents)")
    return value


def require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return value


def require_choice(value: Any, choices: Iterable[str], field: str) -> str:
    allowed = list(choices)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
    return value


def require_rating(value: Any, field: str = "overall_rating") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer between 1 and 5")
    if not 1 <= value <= 5:
        raise ValidationError(f"{field} must be between 1 and 5")
    return value


def require_text(
    value: Any,
    field: str,
    *,
    min_length: int = 0,
    max_length: int | None = None,
    required: bool = True,
) -> str | None:
    """Strip and length-check a free-text field."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")

    text = value.strip()
    if len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text
