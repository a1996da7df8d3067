from __future__ import annotations

import re
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from typing import Union

from group_settlement.services.errors import InvalidAmount

# ISO 4217 exponents that differ from the usual 2.
_MINOR_DIGITS: dict[str, int] = {
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "ISK": 0,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "PYG": 0,
    "RWF": 0,
    "UGX": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
}

# Largest value a BIGINT column holds.
MAX_MINOR = 2**63 - 1

_STRIP_RE = re.compile(r"[\s,_]|^[^\d+\-.]+")


def minor_digits(currency: str) -> int:
    return _MINOR_DIGITS.get(currency.upper(), 2)


def to_minor(amount: Union[Decimal, int, str], currency: str = "USD") -> int:
    """
    Convert a decimal amount to integer minor units.

    "12.5" USD -> 1250, "1,200" JPY -> 1200. Amounts with more fractional
    digits than the currency allows are rejected rather than rounded.
    """

    if isinstance(amount, bool) or isinstance(amount, float):
        raise InvalidAmount(amount, "floating point amounts are not accepted")
    if isinstance(amount, str):
        cleaned = _STRIP_RE.sub("", amount.strip())
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            raise InvalidAmount(amount, "not a decimal number") from None
    else:
        value = Decimal(amount)

    if not value.is_finite():
        raise InvalidAmount(amount, "not a finite number")

    if value and value.adjusted() > 18:
        raise InvalidAmount(amount, "amount is too large")

    places = minor_digits(currency)
    # Exact arithmetic: any rounding means the input had sub-minor precision.
    with localcontext() as ctx:
        ctx.prec = 40
        ctx.traps[Inexact] = True
        try:
            minor = int(value.quantize(Decimal(1).scaleb(-places)).scaleb(places))
        except Inexact:
            raise InvalidAmount(amount, f"too many decimal places for {currency.upper()}") from None

    if abs(minor) > MAX_MINOR:
        raise InvalidAmount(amount, "amount is too large")
    return minor


def to_decimal(amount_minor: int, currency: str = "USD") -> Decimal:
    digits = minor_digits(currency)
    return Decimal(amount_minor).scaleb(-digits).quantize(Decimal(1).scaleb(-digits))


def format_minor(amount_minor: int, currency: str = "USD", *, signed: bool = False) -> str:
    text = f"{to_decimal(amount_minor, currency):f}"
    if signed and amount_minor > 0:
        return f"+{text}"
    return text
