from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.errors import ValidationError

CENT = Decimal("0.01")
UNIT = Decimal("1")
ZERO = Decimal("0.00")


def to_decimal(value, field="amount") -> Decimal:
    """Coerce request/DB values to Decimal without going through float."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(value) -> Decimal:
    """Round to whole currency units, half away from zero."""
    return to_decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP).quantize(CENT)


def split_commission(amount, rate):
    """Return (commission, remainder) that always add up to ``amount``."""
    amount = quantize(amount)
    commission = (amount * to_decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return commission, amount - commission
