# Overview: Strict coercion of client input (quantities, money, ids) into engine types.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .money import round_cents


# Maximum price: S/ 9,999,999.99
# Prevents Numeric(12, 2) overflow and nonsensical prices
MAX_PRICE = Decimal("9999999.99")


def coerce_int(value: Any, field: str) -> int:
    """
    Integers only: rejects floats, decimals, booleans and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return coerce_int(value, field)


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    quantity = coerce_int(value, field)
    if quantity < 1:
        raise ValidationError(f"{field} must be at least 1")
    return quantity


def coerce_money(value: Any, field: str) -> Decimal:
    """Accepts int, str or Decimal; floats go through str() so 0.1 stays 0.1."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal amount")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    if amount > MAX_PRICE:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE}")
    return round_cents(amount)


def clean_text(value: Any) -> str | None:
    """Trim free text; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("text fields must be strings")
    stripped = value.strip()
    return stripped or None


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required", details={"missing": missing})
