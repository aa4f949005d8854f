"""
Helpers for the daily quota window.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from autoapply.core.config import settings


def start_of_today(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    """
    Return local midnight of the quota timezone as an aware datetime.

    Args:
        tz_name: IANA timezone name, defaults to ``settings.quota_timezone``
        now: Reference instant (aware), defaults to the current time

    Returns:
        Midnight of the day containing ``now`` in ``tz_name``

    Raises:
        ValueError: if ``now`` is naive
    """
    if now is not None and now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    tz = ZoneInfo(tz_name or settings.quota_timezone)
    reference = (now or datetime.now(timezone.utc)).astimezone(tz)
    return reference.replace(hour=0, minute=0, second=0, microsecond=0)
