"""Time expression parser for reminders.

Turns the normalized time string returned by the intent classifier into an
absolute instant. Forms are tried in order and the first match wins:

1. Relative duration: "10 minutes", "2 hours", "30 seconds"
2. Absolute date/time: ISO-8601 ("2025-10-26T15:00:00Z") or a few common layouts
3. Clock time: "14:30", "2:30 PM" (today, or tomorrow if already passed)

Nothing here reads the system clock; "now" is always passed in.
"""

import re
from datetime import datetime, timedelta
from typing import Optional

# Checked in this order, like the classifier output usually reads
RELATIVE_UNITS = (
    ("minute", "minutes"),
    ("hour", "hours"),
    ("second", "seconds"),
)

_NUMBER_RE = re.compile(r"\d+")
_CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)?", re.IGNORECASE)

ABSOLUTE_FORMATS = (
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%B %d, %Y %H:%M",
    "%B %d, %Y",
    "%b %d, %Y %H:%M",
    "%b %d, %Y",
)


def parse_reminder_time(time_string: Optional[str], now: datetime) -> Optional[datetime]:
    """Parse a time expression relative to now.

    Args:
        time_string: Normalized time from the intent classifier
        now: Current instant, used for relative and clock-time forms

    Returns:
        The target instant, or None when no form matches
    """
    if not time_string or not time_string.strip():
        return None

    text = time_string.strip()
    for parser in (_parse_relative, _parse_absolute, _parse_clock):
        result = parser(text, now)
        if result is not None:
            return result
    return None


def _parse_relative(text: str, now: datetime) -> Optional[datetime]:
    lowered = text.lower()
    for unit, plural in RELATIVE_UNITS:
        if unit in lowered:
            # A missing number counts as 0, e.g. "in a minute" -> now
            match = _NUMBER_RE.search(lowered)
            amount = int(match.group()) if match else 0
            return now + timedelta(**{plural: amount})
    return None


def _parse_absolute(text: str, now: datetime) -> Optional[datetime]:
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in ABSOLUTE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    # Naive values are read in the caller's timezone
    if parsed.tzinfo is None and now.tzinfo is not None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    return parsed


def _parse_clock(text: str, now: datetime) -> Optional[datetime]:
    match = _CLOCK_RE.search(text)
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2))
    meridiem = (match.group(3) or "").upper()

    if meridiem == "PM" and hours != 12:
        hours += 12
    if meridiem == "AM" and hours == 12:
        hours = 0

    try:
        target = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    except ValueError:
        # Out-of-range clock values ("25:00", "13:30 PM") are not a time
        return None

    if target <= now:
        target += timedelta(days=1)
    return target


def format_reminder_time(time: datetime, now: datetime) -> str:
    """Describe how far away a reminder is, e.g. "In 5 minutes"."""
    diff = time - now
    if diff.total_seconds() <= 0:
        return "Past due"

    minutes = int(diff.total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 60:
        return f"In {minutes} minute{'' if minutes == 1 else 's'}"
    if hours < 24:
        return f"In {hours} hour{'' if hours == 1 else 's'}"
    if days < 7:
        return f"In {days} day{'' if days == 1 else 's'}"
    return time.strftime("%Y-%m-%d")
