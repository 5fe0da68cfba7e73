from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation

Cents = int

_CENT = Decimal("0.01")
_ONE = Decimal("1")


def to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def dollars_to_cents(amount: object) -> Cents:
    """Convert a dollar amount (str, int, float or Decimal) to whole cents, half-up."""
    dollars = to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(dollars * 100)


def mul_div_half_up(amount: Cents, numerator: Decimal | int, denominator: Decimal | int) -> Cents:
    return int((Decimal(amount) * numerator / denominator).quantize(_ONE, rounding=ROUND_HALF_UP))


def mul_div_floor(amount: Cents, numerator: Decimal | int, denominator: Decimal | int) -> Cents:
    return int((Decimal(amount) * numerator / denominator).to_integral_value(rounding=ROUND_FLOOR))
