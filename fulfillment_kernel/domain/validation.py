"""
Lightweight domain validation helpers.

Pure checks with no I/O.  Used at kernel service boundaries to enforce
whole-number quantities, non-negative Decimal money and required text.
Every failure is a ValidationError naming the field.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from fulfillment_kernel.exceptions import ValidationError


def require_whole_number(value: Any, name: str, minimum: int) -> int:
    """Integers >= ``minimum``.  bool and float are rejected."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(name, f"must be a whole number, got {value!r}")
    if value < minimum:
        raise ValidationError(name, f"must be at least {minimum}, got {value}")
    return value


def require_money(value: Any, name: str, *, optional: bool = False) -> Decimal | None:
    """Decimal (or int / numeric str) >= 0.  float is rejected."""
    if value is None:
        if optional:
            return None
        raise ValidationError(name, "is required")
    if isinstance(value, (bool, float)):
        raise ValidationError(name, f"must be a Decimal, int or str, got {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(name, f"{value!r} is not a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(name, f"must be >= 0, got {amount}")
    return amount


def require_text(value: Any, name: str) -> str:
    """Non-blank string, returned stripped."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(name, "is required")
    return value.strip()
