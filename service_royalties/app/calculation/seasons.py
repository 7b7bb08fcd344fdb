"""
Season lookup from transaction dates.
"""

from datetime import date, datetime
from typing import Optional, Union

DateInput = Union[date, datetime, str, None]

_SEASON_BY_MONTH = {
    1: "Holiday",
    2: "Winter",
    3: "Spring", 4: "Spring", 5: "Spring",
    6: "Summer", 7: "Summer", 8: "Summer",
    9: "Fall", 10: "Fall", 11: "Fall",
    12: "Holiday",
}


def parse_transaction_date(value: DateInput) -> Optional[date]:
    """Parse a date, datetime or ISO string; None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def determine_season(value: DateInput) -> Optional[str]:
    """Season name for a transaction date, or None without a usable date."""
    parsed = parse_transaction_date(value)
    if parsed is None:
        return None
    return _SEASON_BY_MONTH[parsed.month]
