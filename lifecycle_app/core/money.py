from decimal import Decimal, InvalidOperation

from .errors import ValidationError

# Minor-unit scale per ISO 4217 code. UGX and RWF have no minor unit in practice.
CURRENCY_SCALE = {
    "UGX": 0,
    "RWF": 0,
    "TZS": 2,
    "KES": 2,
    "NGN": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
}


def normalize_currency(currency: str | None, default: str = "UGX") -> str:
    code = (currency or default).strip().upper()
    if code not in CURRENCY_SCALE:
        allowed = ", ".join(sorted(CURRENCY_SCALE))
        raise ValidationError(f"Unsupported currency: {code}. Allowed: {allowed}")
    return code


def to_amount(value, currency: str, *, field: str = "amount") -> Decimal:
    """Parse ``value`` into a Decimal at the currency's scale.

    Values with more precision than the currency allows are rejected rather
    than rounded, and floats are converted through ``str`` so 0.1 stays 0.1.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}") from None

    if not amount.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")

    scale = CURRENCY_SCALE[normalize_currency(currency)]
    quantum = Decimal(1).scaleb(-scale)
    quantized = amount.quantize(quantum)
    if quantized != amount:
        raise ValidationError(
            f"{field} {amount} has more than {scale} decimal places for {currency}"
        )
    return quantized


def quantize(amount: Decimal, currency: str) -> Decimal:
    """Bring a stored amount back to the currency's own scale."""
    scale = CURRENCY_SCALE.get(currency, 2)
    return Decimal(amount).quantize(Decimal(1).scaleb(-scale))


def amount_str(amount: Decimal, currency: str) -> str:
    return str(quantize(amount, currency))
