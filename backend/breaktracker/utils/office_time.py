"""
Office clock helpers.

Policy times are 12-hour strings such as "2:30 PM". Everything here runs in the
policy timezone (settings.POLICY_TIMEZONE), never in the host's local time, so
the classifier and the scheduler agree wherever the server runs.
"""
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from breaktracker.core.config import settings
from breaktracker.core.exceptions import InvalidTimeFormat

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s+([A-Za-z]{2})\s*$")


def policy_zone(tz: str | None = None) -> ZoneInfo:
    return ZoneInfo(tz or settings.POLICY_TIMEZONE)


def parse_time_to_minutes(value: str) -> int:
    """'10:15 AM' -> 615. 12 AM is midnight, 12 PM is noon."""
    match = _TIME_RE.match(str(value))
    if not match:
        raise InvalidTimeFormat(f'Invalid 12-hour time string: "{value}"')

    hours, minutes = int(match.group(1)), int(match.group(2))
    modifier = match.group(3).upper()
    if not 1 <= hours <= 12 or not 0 <= minutes <= 59 or modifier not in ("AM", "PM"):
        raise InvalidTimeFormat(f'Invalid 12-hour time string: "{value}"')

    if hours == 12:
        hours = 0
    if modifier == "PM":
        hours += 12
    return hours * 60 + minutes


def format_minutes(total_minutes: int) -> str:
    """615 -> '10:15 AM'."""
    if not 0 <= total_minutes < 24 * 60:
        raise InvalidTimeFormat(f"Minutes out of range: {total_minutes}")
    hours, minutes = divmod(total_minutes, 60)
    modifier = "PM" if hours >= 12 else "AM"
    hours = hours % 12 or 12
    return f"{hours}:{minutes:02d} {modifier}"


@dataclass(frozen=True)
class OfficeNow:
    date: date
    minutes: int
    instant: datetime  # aware, UTC


def now_in_policy_timezone(now: datetime | None = None, tz: str | None = None) -> OfficeNow:
    instant = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    local = instant.astimezone(policy_zone(tz))
    return OfficeNow(
        date=local.date(),
        minutes=local.hour * 60 + local.minute,
        instant=instant,
    )


@dataclass(frozen=True)
class DailyTrigger:
    hour: int
    minute: int
    timezone: str

    @property
    def cron_expression(self) -> str:
        return f"{self.minute} {self.hour} * * *"


def time_to_daily_trigger(value: str, tz: str | None = None) -> DailyTrigger:
    hour, minute = divmod(parse_time_to_minutes(value), 60)
    return DailyTrigger(hour=hour, minute=minute, timezone=tz or settings.POLICY_TIMEZONE)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, never negative."""
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(0, math.floor(seconds / 60))
