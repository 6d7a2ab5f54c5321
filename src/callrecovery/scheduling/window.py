"""
Daily call-window arithmetic.

All values are interpreted in the clock of ``now``; no timezone conversion
happens here. Callers pass an aware datetime in the merchant's call zone.
"""

import re
from datetime import datetime, timedelta

DEFAULT_WINDOW_START = 9 * 60
DEFAULT_WINDOW_END = 19 * 60

_HHMM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")


def parse_hhmm(value: str | None) -> int | None:
    """Parse ``"HH:MM"`` into minutes after midnight.

    Returns None for anything that is not two-digit hours 00-23 and two-digit
    minutes 00-59.
    """
    match = _HHMM_PATTERN.match((value or "").strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def _minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def next_run_time(
    now: datetime,
    window_start: str | None,
    window_end: str | None,
    lead_minutes: int = 0,
) -> datetime:
    """Return the earliest instant at or after ``now + lead`` inside the window.

    Args:
        now: Current time in the call-window clock.
        window_start: ``"HH:MM"`` opening time; 09:00 when malformed.
        window_end: ``"HH:MM"`` closing time; 19:00 when malformed.
        lead_minutes: Minimum delay before the call, negatives count as 0.

    Returns:
        ``now + lead`` when its minute-of-day lies in the (inclusive) window,
        otherwise today's window opening if ``now`` has not reached it yet,
        else tomorrow's opening.
    """
    start = parse_hhmm(window_start)
    end = parse_hhmm(window_end)
    if start is None:
        start = DEFAULT_WINDOW_START
    if end is None:
        end = DEFAULT_WINDOW_END
    opening, closing = min(start, end), max(start, end)

    candidate = now + timedelta(minutes=max(0, lead_minutes))
    if opening <= _minute_of_day(candidate) <= closing:
        return candidate

    next_opening = now.replace(
        hour=opening // 60,
        minute=opening % 60,
        second=0,
        microsecond=0,
    )
    if _minute_of_day(now) >= opening:
        next_opening += timedelta(days=1)
    return next_opening
