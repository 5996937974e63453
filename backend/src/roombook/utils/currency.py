"""Currency conversion and formatting for BRL amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

currency_symbols = {
    "BRL": "R$",
    "USD": "$",
    "EUR": "€",
}


def to_minor_units(value: Any) -> Optional[int]:
    """
    Convert a gateway decimal amount (reais) to centavos.

    Floats are routed through their string form so that 90.1 becomes
    9010 and not 9009.

    Args:
        value: Amount in major units as int, float, str or Decimal

    Returns:
        Amount in centavos, or None when the value is missing or unparseable

    Examples:
        >>> to_minor_units(90)
        9000
        >>> to_minor_units("49.995")
        5000
        >>> to_minor_units(None) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """
    Convert centavos to a decimal amount in reais.

    Examples:
        >>> from_minor_units(5000)
        Decimal('50.00')
    """
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def format_amount(amount: int, currency: str = "BRL") -> str:
    """
    Format centavos for humans.

    Examples:
        >>> format_amount(123456)
        'R$1,234.56 BRL'
    """
    currency_upper = currency.upper()
    symbol = currency_symbols.get(currency_upper, currency_upper)
    return f"{symbol}{from_minor_units(amount):,.2f} {currency_upper}"
