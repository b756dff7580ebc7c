"""
salesflow.mergetags.formatting

Value formatting shared by merge-tag providers and modifiers.

Responsibilities:
- Money and number rendering (`RM 1,234.50`, `1,234.50`).
- PHP-style date patterns (`d M Y`, `h:i A`), as stored in message templates.
- Relative times (`2 hours ago`).
- Lenient parsing of datetimes and decimals coming from records or JSON contexts.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo

CURRENCY_SYMBOLS = {
    "MYR": "RM",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "SGD": "S$",
}


def to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None


def format_number(value: Any, decimals: int = 2) -> str:
    amount = to_decimal(value) or Decimal("0")
    return f"{amount:,.{decimals}f}"


def format_money(value: Any, currency: str | None) -> str:
    code = (currency or "MYR").upper()
    symbol = CURRENCY_SYMBOLS.get(code, code)
    return f"{symbol} {format_number(value)}"


def parse_datetime(value: Any) -> datetime | None:
    """
    Accept datetimes, dates, ISO strings and the `d M Y` style produced by providers.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%d %b %Y, %I:%M %p", "%d %b %Y", "%Y/%m/%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def to_local(value: datetime, tz_name: str) -> datetime:
    # Naive datetimes are stored as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(ZoneInfo(tz_name))


_MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]
_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _ordinal_suffix(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


_PHP_TOKENS: dict[str, Callable[[datetime], str]] = {
    "d": lambda v: f"{v.day:02d}",
    "j": lambda v: str(v.day),
    "D": lambda v: _DAYS[v.weekday()][:3],
    "l": lambda v: _DAYS[v.weekday()],
    "N": lambda v: str(v.isoweekday()),
    "S": lambda v: _ordinal_suffix(v.day),
    "m": lambda v: f"{v.month:02d}",
    "n": lambda v: str(v.month),
    "M": lambda v: _MONTHS[v.month - 1][:3],
    "F": lambda v: _MONTHS[v.month - 1],
    "Y": lambda v: str(v.year),
    "y": lambda v: f"{v.year % 100:02d}",
    "H": lambda v: f"{v.hour:02d}",
    "G": lambda v: str(v.hour),
    "h": lambda v: f"{v.hour % 12 or 12:02d}",
    "g": lambda v: str(v.hour % 12 or 12),
    "i": lambda v: f"{v.minute:02d}",
    "s": lambda v: f"{v.second:02d}",
    "A": lambda v: "AM" if v.hour < 12 else "PM",
    "a": lambda v: "am" if v.hour < 12 else "pm",
}


def php_date(value: datetime, pattern: str) -> str:
    """
    Format `value` with a PHP `date()` pattern. A backslash escapes the next character.
    """

    out: list[str] = []
    escaped = False
    for ch in pattern:
        if escaped:
            out.append(ch)
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        token = _PHP_TOKENS.get(ch)
        out.append(token(value) if token is not None else ch)
    return "".join(out)


_UNITS: list[tuple[str, int]] = [
    ("year", 365 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
]


def humanize_since(value: datetime, now: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)

    delta: timedelta = now - value
    seconds = int(delta.total_seconds())
    suffix = "ago" if seconds >= 0 else "from now"
    seconds = abs(seconds)

    for unit, size in _UNITS:
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'} {suffix}"
    return f"1 second {suffix}"
