"""Civil time normalisation.

Every weekday and minute-of-day used by the availability engine is derived
here, in a single fixed civil time zone, so results never depend on the time
zone of the machine the service happens to run on.

Weekdays follow the catalog convention: 1 = Sunday through 7 = Saturday.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import Tuple
from zoneinfo import ZoneInfo

from .config import settings

# Single-letter weekday codes used by event ``days_of_week`` strings,
# indexed by catalog weekday (1 = Sunday).
WEEKDAY_LETTERS = ("U", "M", "T", "W", "R", "F", "S")


@lru_cache(maxsize=8)
def civil_zone(name: str | None = None) -> ZoneInfo:
    """Return the configured civil time zone (or ``name`` if given)."""
    return ZoneInfo(name or settings.civil_timezone)


def utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def to_civil(instant: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert ``instant`` into the civil zone. Naive values are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz or civil_zone())


def catalog_weekday(local: datetime | date) -> int:
    """Map a civil date to the catalog weekday (1 = Sunday .. 7 = Saturday)."""
    # isoweekday: Monday=1 .. Sunday=7
    return local.isoweekday() % 7 + 1


def weekday_and_minute(instant: datetime, tz: ZoneInfo | None = None) -> Tuple[int, int]:
    """Return ``(weekday, minute_of_day)`` for ``instant`` in the civil zone."""
    local = to_civil(instant, tz)
    return catalog_weekday(local), local.hour * 60 + local.minute


def weekday_letter(weekday: int) -> str:
    """Return the ``days_of_week`` letter for a catalog weekday."""
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday must be 1-7 (Sun-Sat), got {weekday}")
    return WEEKDAY_LETTERS[weekday - 1]


def time_of_day(instant: datetime, tz: ZoneInfo | None = None) -> time:
    """Return the civil wall-clock time of ``instant`` (seconds truncated)."""
    local = to_civil(instant, tz)
    return time(local.hour, local.minute)


def end_of_day(day: date | datetime, tz: ZoneInfo | None = None) -> datetime:
    """Return 23:59:59 of ``day`` in the civil zone as an aware datetime.

    Datetime inputs are first converted to the civil zone so that the civil
    calendar date, not the UTC one, decides which day is meant.
    """
    zone = tz or civil_zone()
    if isinstance(day, datetime):
        day = to_civil(day, zone).date()
    return datetime.combine(day, time(23, 59, 59), tzinfo=zone)


def start_of_day(day: date | datetime, tz: ZoneInfo | None = None) -> datetime:
    """Return midnight of ``day`` in the civil zone as an aware datetime."""
    zone = tz or civil_zone()
    if isinstance(day, datetime):
        day = to_civil(day, zone).date()
    return datetime.combine(day, time(0, 0), tzinfo=zone)


def minutes_to_time(minutes: int) -> time:
    """Convert minutes since midnight (any frame) to a wall-clock time."""
    minutes %= 1440
    return time(minutes // 60, minutes % 60)
