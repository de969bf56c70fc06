"""Academic term resolution.

A term is current when the query instant falls between the start of its
first day and 23:59:59 of its last day, both in the civil time zone. Sub
sessions overlap their full term, so more than one term is routinely
current at the same time and every match is returned.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List, Set

from zoneinfo import ZoneInfo

from .clock import civil_zone, end_of_day, start_of_day, to_civil
from .models import Term


def _as_instant(as_of: date | datetime, zone: ZoneInfo) -> datetime:
    if isinstance(as_of, datetime):
        return to_civil(as_of, zone)
    return start_of_day(as_of, zone)


def is_current(term: Term, as_of: date | datetime, tz: ZoneInfo | None = None) -> bool:
    """Return True if ``as_of`` lies within ``term`` (end of day inclusive)."""
    zone = tz or civil_zone()
    instant = _as_instant(as_of, zone)
    return start_of_day(term.start_date, zone) <= instant <= end_of_day(term.end_date, zone)


def current_terms(as_of: date | datetime, terms: Iterable[Term], tz: ZoneInfo | None = None) -> List[Term]:
    """Return every term containing ``as_of``.

    An empty list means there is no scheduling data for that moment; callers
    treat it as "nothing is scheduled", not as an error.
    """
    zone = tz or civil_zone()
    return [t for t in terms if is_current(t, as_of, zone)]


def term_ids(terms: Iterable[Term]) -> Set[int]:
    return {t.id for t in terms}
