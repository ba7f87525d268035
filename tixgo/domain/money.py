from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from tixgo.domain.exceptions import ValidationError


MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (e.g. rupees) to integer minor units (paise)."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc

    scaled = value * MINOR_UNITS_PER_MAJOR
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))
