import calendar
import re
from datetime import date, datetime, timedelta

ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
SLASH_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{2,4})\b")
RELATIVE_AGO = re.compile(
    r"\b(\d+|a|an|one)\s+(day|week|month)s?\s+ago\b", re.IGNORECASE
)
LAST_UNIT = re.compile(r"\blast\s+(week|month)\b", re.IGNORECASE)

_WORD_NUMBERS = {"a": 1, "an": 1, "one": 1}


def subtract_months(day: date, months: int) -> date:
    """Move *day* back by *months*, clamping to the last day of the target month."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _shift(today: date, amount: int, unit: str) -> date | None:
    """Move *today* back by *amount* units; None when the result is not a date."""
    unit = unit.lower()
    try:
        if unit == "day":
            return today - timedelta(days=amount)
        if unit == "week":
            return today - timedelta(weeks=amount)
        return subtract_months(today, amount)
    except (OverflowError, ValueError):
        return None


def resolve_date_phrase(text: str, today: date) -> date | None:
    """
    Find a date mentioned in free text and resolve it against *today*.

    Handles ``today``, ``yesterday``, ``tomorrow``, ``N days/weeks/months ago``,
    ``last week/month`` and explicit ``YYYY-MM-DD`` or ``MM/DD/YYYY`` dates.

    Returns:
        The resolved date, or None when the text mentions no date.
    """
    if not text:
        return None
    low = text.lower()

    match = ISO_DATE.search(low)
    if match:
        try:
            return date.fromisoformat(match.group(1))
        except ValueError:
            pass

    match = SLASH_DATE.search(low)
    if match:
        month, day_of_month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        try:
            return date(year, month, day_of_month)
        except ValueError:
            pass

    match = RELATIVE_AGO.search(low)
    if match:
        raw_amount, unit = match.groups()
        amount = _WORD_NUMBERS.get(raw_amount.lower())
        if amount is None:
            amount = int(raw_amount)
        return _shift(today, amount, unit)

    match = LAST_UNIT.search(low)
    if match:
        return _shift(today, 1, match.group(1))

    if re.search(r"\byesterday\b", low):
        return today - timedelta(days=1)
    if re.search(r"\btomorrow\b", low):
        return today + timedelta(days=1)
    if re.search(r"\btoday\b", low):
        return today
    return None


def normalize_date_value(value: str | None, today: date) -> str | None:
    """Normalize an ISO date or a relative phrase to ``YYYY-MM-DD``."""
    if not value or value.strip().lower() in {"null", "none"}:
        return None
    resolved = resolve_date_phrase(value, today)
    if resolved is not None:
        return resolved.isoformat()
    try:
        return datetime.fromisoformat(value.strip()).date().isoformat()
    except ValueError:
        return None
