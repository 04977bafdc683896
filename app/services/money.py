# app/services/money.py

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from app.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce ``value`` to a Decimal rounded half-up to cents."""
    if value is None:
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate) -> Decimal:
    return to_money(amount * to_money(rate) / Decimal(100))
