"""
Year Parsing

Extracts a construction year from the many ways providers encode dates:
plain numbers, Unix timestamps and four textual dialects.
"""
import re
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from config.settings import settings

DateFormat = Literal["iso", "us", "eu", "year_only"]

# Order matters: a slash date is tried as US before EU, and only the EU
# pattern accepts the dotted form.
DATE_PATTERNS = [
    ("iso", re.compile(r"^(\d{4})-(\d{2})-(\d{2})")),
    ("us", re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")),
    ("eu", re.compile(r"^(\d{1,2})[/.](\d{1,2})[/.](\d{4})$")),
    ("year_only", re.compile(r"^(\d{4})$")),
]

_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_LEADING_YEAR = re.compile(r"^(\d{4})")
_TRAILING_YEAR = re.compile(r"(\d{4})$")

# Magnitudes above which a number is a timestamp rather than a year
_SECONDS_THRESHOLD = 1e9
_MILLIS_THRESHOLD = 1e12


def detect_date_format(value: str) -> Optional[DateFormat]:
    """
    Detect which textual dialect a date string uses.

    Args:
        value: Raw date text

    Returns:
        Format name, or None when no pattern matches
    """
    for fmt, pattern in DATE_PATTERNS:
        if pattern.match(value):
            return fmt
    return None


def is_plausible_year(year: Optional[int]) -> bool:
    """Check a year against the building-construction domain."""
    return (
        year is not None
        and settings.min_plausible_year <= year <= settings.max_plausible_year
    )


def _year_from_number(value: float) -> Optional[int]:
    if value > _MILLIS_THRESHOLD:
        value = value / 1000.0
    if value > _SECONDS_THRESHOLD:
        try:
            year = datetime.fromtimestamp(value, tz=timezone.utc).year
        except (OverflowError, OSError, ValueError):
            return None
    else:
        year = int(value)
    return year if is_plausible_year(year) else None


def parse_year(value: Any, default_format: DateFormat = "iso") -> Optional[int]:
    """
    Parse a year out of a raw field value.

    Numbers are read as years, or as Unix timestamps (seconds, or
    milliseconds) when their magnitude says so. Strings are matched against
    the known dialects; when none matches, ``default_format`` decides where
    the year is read from. Anything outside the plausible range is absent.

    Args:
        value: Raw value from a record
        default_format: Dialect to assume when auto-detection fails

    Returns:
        Year, or None when absent / unparseable / implausible
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return _year_from_number(value)

    text = str(value).strip()
    if not text:
        return None

    if _NUMERIC.match(text) and not re.match(r"^\d{4}$", text):
        return _year_from_number(float(text))

    fmt = detect_date_format(text) or default_format

    if fmt == "iso":
        match = _LEADING_YEAR.match(text)
    elif fmt in ("us", "eu"):
        match = _TRAILING_YEAR.search(text)
    else:
        match = re.match(r"^(\d{4})$", text)

    if not match:
        return None

    year = int(match.group(1))
    return year if is_plausible_year(year) else None
