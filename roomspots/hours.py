"""Operating-hours parsing and open/closed evaluation.

Building hours come from the catalog as a single string with one entry per
weekday, Monday first, separated by ``"; "``::

    Monday: 7:00 AM - 11:00 PM; Tuesday: 7:00 AM - 11:00 PM; ...; Sunday: Closed

``parse_hours`` selects the entry for a catalog weekday (1 = Sunday .. 7 =
Saturday) and turns it into one of four results: ``ClosedToday``,
``OpenAllDay``, ``HoursRange`` or ``Unparseable``. Ranges that end past
midnight are returned with a close time above 1440 (6 PM - 2 AM becomes
``HoursRange(1080, 1560)``).

``evaluate`` turns a parse result and a minute-of-day into an
``Availability``. Anything that cannot be parsed is reported as closed, so
the engine never claims a building is open when it does not know.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from zoneinfo import ZoneInfo

from .clock import weekday_and_minute

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440

_DASHES = str.maketrans({"–": "-", "—": "-"})
_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([AaPp][Mm])?$")


@dataclass(frozen=True)
class ClosedToday:
    """The entry for the day says the building is closed."""


@dataclass(frozen=True)
class OpenAllDay:
    """The entry for the day says ``Open 24 hours``."""


@dataclass(frozen=True)
class HoursRange:
    """Opening and closing minutes; ``close`` exceeds 1440 when past midnight."""

    open: int
    close: int

    @property
    def crosses_midnight(self) -> bool:
        return self.close > MINUTES_PER_DAY


@dataclass(frozen=True)
class Unparseable:
    """The entry could not be understood."""

    entry: str
    reason: str


HoursResult = Union[ClosedToday, OpenAllDay, HoursRange, Unparseable]


@dataclass(frozen=True)
class Availability:
    """Whether a building is open and the minute its state next changes."""

    is_open: bool
    boundary: Optional[int] = None


def entry_index(weekday: int) -> int:
    """Index of ``weekday`` (1 = Sunday) in a Monday-first hours string."""
    return (weekday + 5) % 7


def day_entry(hours: str, weekday: int) -> Optional[str]:
    """Return the normalised entry for ``weekday``, or None if it is missing."""
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday must be 1-7 (Sun-Sat), got {weekday}")
    entries = hours.split("; ")
    idx = entry_index(weekday)
    if idx >= len(entries):
        return None
    return entries[idx].translate(_DASHES).strip()


def parse_clock_time(text: str, fallback_suffix: Optional[str] = None) -> int:
    """Convert ``"h:mm AM"`` to minutes since midnight.

    ``fallback_suffix`` is used when ``text`` carries no AM/PM marker.
    Raises ValueError for anything that is not a 12-hour clock time.
    """
    match = _TIME_RE.match(text.strip())
    if not match:
        raise ValueError(f"Invalid clock time: {text!r}")
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = (match.group(3) or fallback_suffix or "").upper()
    if not suffix:
        raise ValueError(f"Missing AM/PM in {text!r}")
    if not (1 <= hour <= 12 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time value: {text!r}")
    hour %= 12
    if suffix == "PM":
        hour += 12
    return hour * 60 + minute


def _suffix(text: str) -> Optional[str]:
    match = _TIME_RE.match(text.strip())
    if match and match.group(3):
        return match.group(3).upper()
    return None


def parse_entry(entry: str) -> HoursResult:
    """Parse a single ``"<Weekday>: <open> - <close>"`` entry."""
    entry = entry.translate(_DASHES).strip()
    if "Closed" in entry:
        return ClosedToday()
    if "Open 24 hours" in entry:
        return OpenAllDay()

    parts = entry.split(": ")
    if len(parts) != 2:
        return Unparseable(entry, "expected '<Weekday>: <range>'")
    sides = parts[1].split(" - ")
    if len(sides) != 2:
        return Unparseable(entry, "expected '<open> - <close>'")

    open_text, close_text = sides[0].strip(), sides[1].strip()
    try:
        close_minutes = parse_clock_time(close_text)
        # "6:00 - 11:00 PM": the open side borrows the close side's suffix
        open_minutes = parse_clock_time(open_text, fallback_suffix=_suffix(close_text))
    except ValueError as exc:
        return Unparseable(entry, str(exc))

    if close_minutes < open_minutes:
        close_minutes += MINUTES_PER_DAY
    return HoursRange(open_minutes, close_minutes)


def parse_hours(hours: Optional[str], weekday: int) -> HoursResult:
    """Parse the entry of ``hours`` that applies to ``weekday``."""
    if not hours:
        return Unparseable("", "no hours")
    entry = day_entry(hours, weekday)
    if entry is None:
        return Unparseable(hours, f"no entry for weekday {weekday}")
    return parse_entry(entry)


def evaluate(result: HoursResult, minute: int) -> Availability:
    """Decide open/closed for ``minute`` given today's parse result.

    ``minute`` may be given in the rolled frame (1440 and above) to test the
    part of a range that lies past midnight. Both ends of a range are
    inclusive.
    """
    if isinstance(result, OpenAllDay):
        return Availability(True, None)
    if isinstance(result, HoursRange):
        if result.open <= minute <= result.close:
            return Availability(True, result.close)
        if minute < result.open:
            return Availability(False, result.open)
        return Availability(False, None)
    if isinstance(result, Unparseable):
        logger.debug("Treating unparseable hours entry as closed: %s (%s)", result.entry, result.reason)
    return Availability(False, None)


def previous_weekday(weekday: int) -> int:
    return 7 if weekday == 1 else weekday - 1


def building_availability(hours: Optional[str], weekday: int, minute: int) -> Availability:
    """Open/closed for a building at ``(weekday, minute)``.

    Today's entry decides first, and a "Closed" entry is final. Otherwise,
    if today leaves the building closed, the previous day's range is checked
    for a spill past midnight, so Friday 6 PM - 2 AM still reports open at
    Saturday 00:30.
    """
    parsed = parse_hours(hours, weekday)
    today = evaluate(parsed, minute)
    if today.is_open or isinstance(parsed, ClosedToday):
        return today

    yesterday = parse_hours(hours, previous_weekday(weekday))
    if isinstance(yesterday, HoursRange) and yesterday.crosses_midnight:
        spilled = evaluate(yesterday, minute + MINUTES_PER_DAY)
        if spilled.is_open:
            return Availability(True, yesterday.close - MINUTES_PER_DAY)
    return today


def availability_at(hours: Optional[str], instant: datetime, tz: ZoneInfo | None = None) -> Availability:
    """Open/closed for ``hours`` at a wall-clock instant in the civil zone."""
    weekday, minute = weekday_and_minute(instant, tz)
    return building_availability(hours, weekday, minute)
