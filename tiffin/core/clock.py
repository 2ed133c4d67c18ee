"""
Business clock.

All cutoff math runs in the service's civil time zone (Asia/Kolkata by
default), never UTC. Services take a clock instance so tests can pin "now".
"""

import re
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from .exceptions import ValidationError
from ..config.settings import settings


TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def parse_hhmm(value: str) -> time:
    """Parse an HH:MM (24h) string, raising ValidationError when malformed"""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"Time must be in HH:MM format, got: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def is_valid_hhmm(value: Optional[str]) -> bool:
    return bool(value) and TIME_PATTERN.match(value) is not None


class BusinessClock:
    """Civil "now" and date helpers in a fixed business time zone"""

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = ZoneInfo(tz_name or settings.business_timezone)

    def now(self) -> datetime:
        """Timezone-aware current time in the business zone"""
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def local_now(self) -> datetime:
        """Naive business-local timestamp, the form stored in the database"""
        return self.now().replace(tzinfo=None)


# Default clock used by the global service instances
business_clock = BusinessClock()
