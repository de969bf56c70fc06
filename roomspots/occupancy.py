"""Per-room occupancy against scheduled events.

A room is occupied when at least one of its events

- belongs to a term that is current,
- meets on today's weekday letter (U, M, T, W, R, F, S), and
- spans the current time of day (start and end inclusive).

Rooms without a matching event are available. A closed building reports no
available rooms whatever its schedule says.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time
from typing import Dict, Iterable, List, Optional, Set, Tuple

from zoneinfo import ZoneInfo

from .clock import time_of_day, weekday_and_minute, weekday_letter
from .models import Event, Room, RoomAvailability


def _todays_events(events: Iterable[Event], term_ids: Set[int], letter: str) -> Dict[int, List[Event]]:
    by_room: Dict[int, List[Event]] = defaultdict(list)
    for ev in events:
        if ev.term_id in term_ids and letter in ev.days_of_week:
            by_room[ev.room_id].append(ev)
    return by_room


def _active(ev: Event, now: time) -> bool:
    return ev.start_time <= now <= ev.end_time


def occupied_room_ids(
    rooms: Iterable[Room],
    events: Iterable[Event],
    term_ids: Set[int],
    letter: str,
    now: time,
) -> Set[int]:
    """Return the ids of rooms with an event in progress at ``now``."""
    if not term_ids:
        return set()
    by_room = _todays_events(events, term_ids, letter)
    return {room.id for room in rooms if any(_active(ev, now) for ev in by_room.get(room.id, []))}


def room_counts(
    rooms: List[Room],
    events: Iterable[Event],
    term_ids: Set[int],
    letter: str,
    now: time,
    is_open: bool = True,
) -> Tuple[int, int]:
    """Return ``(total_rooms, available_rooms)`` for a building."""
    total = len(rooms)
    if not is_open:
        return total, 0
    occupied = occupied_room_ids(rooms, events, term_ids, letter, now)
    return total, total - len(occupied)


def room_availability(
    rooms: Iterable[Room],
    events: Iterable[Event],
    term_ids: Set[int],
    letter: str,
    now: time,
    is_open: bool = True,
) -> List[RoomAvailability]:
    """Describe each room: occupied until an event ends, or available until the next one starts."""
    by_room = _todays_events(events, term_ids, letter) if term_ids else {}
    out: List[RoomAvailability] = []
    for room in rooms:
        if not is_open:
            out.append(
                RoomAvailability(roomId=room.id, roomNumber=room.room_number, isAvailable=False, status="closed")
            )
            continue

        todays = by_room.get(room.id, [])
        running = [ev for ev in todays if _active(ev, now)]
        if running:
            # back-to-back or overlapping events: report the latest end
            current = max(running, key=lambda ev: ev.end_time)
            out.append(
                RoomAvailability(
                    roomId=room.id,
                    roomNumber=room.room_number,
                    isAvailable=False,
                    status="occupied",
                    until=current.end_time,
                    eventName=current.name or None,
                )
            )
            continue

        upcoming = [ev.start_time for ev in todays if ev.start_time > now]
        until: Optional[time] = min(upcoming) if upcoming else None
        out.append(
            RoomAvailability(
                roomId=room.id,
                roomNumber=room.room_number,
                isAvailable=True,
                status="available",
                until=until,
            )
        )

    out.sort(key=lambda r: r.roomNumber)
    return out


def occupancy_clock(instant: datetime, tz: ZoneInfo | None = None) -> Tuple[str, time]:
    """Return today's weekday letter and the wall-clock time for ``instant``."""
    weekday, _ = weekday_and_minute(instant, tz)
    return weekday_letter(weekday), time_of_day(instant, tz)
