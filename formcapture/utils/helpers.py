"""Shared utility functions used across services and blueprints.

parse_date:          ISO / DD.MM.YYYY / DD/MM/YYYY → date (None on bad input)
parse_int_list:      "1,2,3" or [1, 2, 3] → [1, 2, 3]
"""
from datetime import date, datetime


def parse_date(value):
    """Parse a date value to a ``date`` object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS[.fff][Z] (datetime ISO → .date())
    - DD.MM.YYYY
    - DD/MM/YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in ("%d.%m.%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_int_list(value) -> list[int]:
    """Parse ids from a list or comma-separated string, raising ValueError on junk."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValueError("Expected a list of ids")
    result = []
    for item in items:
        if isinstance(item, bool):
            raise ValueError(f"Invalid id: {item!r}")
        result.append(int(item))
    return result


