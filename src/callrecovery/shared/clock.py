"""
Clock used for call-window decisions.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from callrecovery.config import get_settings


def call_window_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or get_settings().call_window_timezone)


def to_window_clock(moment: datetime, zone: ZoneInfo | None = None) -> datetime:
    """Express an aware instant in the call-window zone."""
    return moment.astimezone(zone or call_window_zone())
