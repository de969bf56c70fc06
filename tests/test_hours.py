from datetime import datetime, timezone

import pytest

from roomspots.hours import (
    Availability,
    ClosedToday,
    HoursRange,
    OpenAllDay,
    Unparseable,
    availability_at,
    building_availability,
    entry_index,
    evaluate,
    parse_clock_time,
    parse_entry,
    parse_hours,
)

HOURS = (
    "Monday: 6:00 AM - 11:00 PM; Tuesday: 7:00 AM – 10:00 PM; Wednesday: Closed; "
    "Thursday: Open 24 hours; Friday: 6:00 PM - 2:00 AM; Saturday: 6:00 - 11:00 PM; Sunday: Closed"
)

SUNDAY, MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY = range(1, 8)


def test_entry_index_is_monday_first():
    assert entry_index(MONDAY) == 0
    assert entry_index(SATURDAY) == 5
    assert entry_index(SUNDAY) == 6


@pytest.mark.parametrize(
    "text,minutes",
    [("12:00 AM", 0), ("12:30 AM", 30), ("12:00 PM", 720), ("1:15 PM", 795), ("11:59 PM", 1439), ("6 AM", 360)],
)
def test_parse_clock_time(text, minutes):
    assert parse_clock_time(text) == minutes


@pytest.mark.parametrize("text", ["13:00 PM", "0:30 AM", "7:60 AM", "7:00", "noon"])
def test_parse_clock_time_rejects_malformed(text):
    with pytest.raises(ValueError):
        parse_clock_time(text)


def test_parse_each_weekday():
    assert parse_hours(HOURS, MONDAY) == HoursRange(360, 1380)
    assert parse_hours(HOURS, TUESDAY) == HoursRange(420, 1320)  # en dash
    assert parse_hours(HOURS, WEDNESDAY) == ClosedToday()
    assert parse_hours(HOURS, THURSDAY) == OpenAllDay()
    assert parse_hours(HOURS, FRIDAY) == HoursRange(1080, 1560)
    assert parse_hours(HOURS, SUNDAY) == ClosedToday()


def test_open_side_inherits_close_suffix():
    assert parse_hours(HOURS, SATURDAY) == HoursRange(1080, 1380)


def test_parse_is_deterministic_for_every_weekday():
    for weekday in range(1, 8):
        first = parse_hours(HOURS, weekday)
        assert all(parse_hours(HOURS, weekday) == first for _ in range(5))


def test_closed_wins_over_a_range_in_the_same_entry():
    result = parse_entry("Monday: 6:00 AM - 11:00 PM (Closed for renovation)")
    assert result == ClosedToday()
    assert evaluate(result, 600) == Availability(False, None)


def test_open_24_hours_is_open_every_minute():
    result = parse_entry("Thursday: Open 24 hours")
    assert all(evaluate(result, minute).is_open for minute in range(0, 1440))
    assert evaluate(result, 0).boundary is None


def test_range_boundaries_are_inclusive():
    result = parse_hours(HOURS, MONDAY)
    assert evaluate(result, 1080) == Availability(True, 1380)
    assert evaluate(result, 1380) == Availability(True, 1380)
    assert evaluate(result, 1381) == Availability(False, None)
    assert evaluate(result, 360).is_open
    assert evaluate(result, 359) == Availability(False, 360)


def test_midnight_rollover():
    result = parse_hours(HOURS, FRIDAY)
    assert result == HoursRange(1080, 1560)
    assert evaluate(result, 1080).is_open
    # 12:30 AM expressed in the rolled frame
    assert evaluate(result, 1470) == Availability(True, 1560)
    assert evaluate(result, 1561).is_open is False
    # the same minute in the day's own frame is before opening
    assert evaluate(result, 30) == Availability(False, 1080)


def test_previous_day_spill_keeps_building_open_after_midnight():
    assert building_availability(HOURS, SATURDAY, 30) == Availability(True, 120)
    assert building_availability(HOURS, SATURDAY, 120).is_open
    assert building_availability(HOURS, SATURDAY, 121) == Availability(False, 1080)


def test_closed_today_ignores_previous_day_spill():
    hours = HOURS.replace("Saturday: 6:00 - 11:00 PM", "Saturday: Closed")
    assert building_availability(hours, SATURDAY, 30) == Availability(False, None)
    assert building_availability(hours, SATURDAY, 600) == Availability(False, None)


@pytest.mark.parametrize(
    "entry",
    [
        "Monday 6:00 AM - 11:00 PM",
        "Monday: 6:00 AM to 11:00 PM",
        "Monday: 6:00 AM - 11:00 PM - 1:00 AM",
        "Monday: 25:00 AM - 11:00 PM",
        "Monday: 6:00 - 11:00",
    ],
)
def test_unparseable_entries_are_closed(entry):
    result = parse_entry(entry)
    assert isinstance(result, Unparseable)
    assert evaluate(result, 600) == Availability(False, None)


def test_missing_hours_are_closed():
    assert building_availability(None, MONDAY, 600) == Availability(False, None)
    assert building_availability("", MONDAY, 600) == Availability(False, None)
    assert isinstance(parse_hours("Monday: 6:00 AM - 11:00 PM", SUNDAY), Unparseable)


def test_availability_uses_civil_zone_not_utc():
    # 00:00 UTC on Tuesday is 18:00 Monday in Chicago
    instant = datetime(2025, 2, 4, 0, 0, tzinfo=timezone.utc)
    assert availability_at(HOURS, instant).is_open
    # 05:00 UTC Tuesday is 23:00 Monday in Chicago: still inside the inclusive close
    assert availability_at(HOURS, datetime(2025, 2, 4, 5, 0, tzinfo=timezone.utc)).is_open
    assert not availability_at(HOURS, datetime(2025, 2, 4, 5, 1, tzinfo=timezone.utc)).is_open
