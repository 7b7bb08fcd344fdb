"""
Numeric coercion for externally sourced values.

Rule data is authored by an extraction pipeline or edited by hand, and
sales data arrives from spreadsheets and ERP exports, so numbers show up as
strings with currency symbols, nested ``{"amount": ...}`` objects, blanks
or plain prose. ``coerce`` turns any of these into a finite ``float`` or
``None``; ``None`` is the rejection marker and is never silently replaced
by zero.
"""

import math
import re
from decimal import Decimal
from typing import Any, Mapping, Optional

AMOUNT_KEYS = ("amount", "value", "rate", "baseAmount", "number")

CURRENCY_SYMBOLS = "$€£¥₹₩₽¢"

_STRIP_PATTERN = re.compile("[" + re.escape(CURRENCY_SYMBOLS) + r",\s]")


def coerce(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float, or return ``None`` if it is not a number."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            return _finite(float(value))
        except (OverflowError, ValueError):
            return None

    if isinstance(value, Mapping):
        for key in AMOUNT_KEYS:
            if key in value:
                return coerce(value[key])
        return None

    if isinstance(value, str):
        return _parse_string(value)

    return None


def coerce_non_negative(value: Any) -> Optional[float]:
    """Like ``coerce`` but also rejects negative numbers."""
    number = coerce(value)
    if number is None or number < 0:
        return None
    return number


def coerce_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Coerce to an integer, falling back to ``default`` when rejected."""
    number = coerce(value)
    if number is None:
        return default
    return int(number)


def _parse_string(text: str) -> Optional[float]:
    text = text.strip()
    if not text:
        return None

    try:
        return _finite(float(text))
    except ValueError:
        pass

    cleaned = _STRIP_PATTERN.sub("", text)
    if not cleaned:
        return None

    try:
        return _finite(float(cleaned))
    except ValueError:
        return None


def _finite(number: float) -> Optional[float]:
    if math.isnan(number) or math.isinf(number):
        return None
    return number
